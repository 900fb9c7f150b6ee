"""Ad Campaign Service test contracts"""
