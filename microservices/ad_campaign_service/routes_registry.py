"""
Ad Campaign Service Routes Registry
Defines all API routes exposed by the service, used by the /info endpoint.
"""
from typing import List, Dict, Any

BASE_PATH = "/api/v1/ad-campaigns"

SERVICE_ROUTES = [
    # Health and Service Info
    {"path": "/health", "methods": ["GET"], "auth_required": False,
     "description": "Basic health check endpoint"},
    {"path": "/health/detailed", "methods": ["GET"], "auth_required": False,
     "description": "Detailed health check with dependencies"},
    {"path": "/info", "methods": ["GET"], "auth_required": False,
     "description": "Service metadata and routes"},
    # Pricing and slots
    {"path": f"{BASE_PATH}/pricing", "methods": ["GET"], "auth_required": False,
     "description": "Ad plan catalogue with duration discounts"},
    {"path": f"{BASE_PATH}/pricing/quote", "methods": ["GET"], "auth_required": False,
     "description": "Price an ad type for a duration"},
    {"path": f"{BASE_PATH}/slots/{{ad_type}}", "methods": ["GET"], "auth_required": True,
     "description": "Slot overview and the caller's available slots"},
    {"path": f"{BASE_PATH}/display/{{ad_type}}", "methods": ["GET"], "auth_required": False,
     "description": "Active campaigns for a placement in rotation order"},
    # Campaigns
    {"path": BASE_PATH, "methods": ["GET", "POST"], "auth_required": True,
     "description": "Admin listing (GET) or create campaign (POST)"},
    {"path": f"{BASE_PATH}/mine", "methods": ["GET"], "auth_required": True,
     "description": "Campaigns of the calling shop"},
    {"path": f"{BASE_PATH}/{{campaign_id}}", "methods": ["GET"], "auth_required": True,
     "description": "Get campaign by ID"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/content", "methods": ["PUT"], "auth_required": True,
     "description": "Edit title, description, media or link"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/auto-renew", "methods": ["PUT"], "auth_required": True,
     "description": "Switch auto-renewal on or off"},
    # Lifecycle
    {"path": f"{BASE_PATH}/{{campaign_id}}/payment", "methods": ["POST"], "auth_required": True,
     "description": "Record completed payment"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/approve", "methods": ["POST"], "auth_required": True,
     "description": "Admin approval"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/reject", "methods": ["POST"], "auth_required": True,
     "description": "Admin rejection with reason"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/cancel", "methods": ["POST"], "auth_required": True,
     "description": "Owner cancellation"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/renew", "methods": ["POST"], "auth_required": True,
     "description": "Owner renewal for a new term"},
    # Analytics
    {"path": f"{BASE_PATH}/{{campaign_id}}/view", "methods": ["POST"], "auth_required": False,
     "description": "Record an impression"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/click", "methods": ["POST"], "auth_required": False,
     "description": "Record a click"},
    {"path": f"{BASE_PATH}/{{campaign_id}}/analytics", "methods": ["GET"], "auth_required": True,
     "description": "Views, clicks, CTR and days remaining"},
    # Admin
    {"path": f"{BASE_PATH}/admin/pricing", "methods": ["PUT"], "auth_required": True,
     "description": "Change a plan rate, toggle a plan, or replace discounts"},
    {"path": f"{BASE_PATH}/admin/lifecycle/run", "methods": ["POST"], "auth_required": True,
     "description": "Run one lifecycle cycle (warnings, expiry, auto-renewal)"},
]


def get_route_summary() -> Dict[str, Any]:
    """Compact route metadata grouped by area"""
    groups: Dict[str, List[str]] = {"health": [], "campaigns": [], "lifecycle": [], "analytics": [], "admin": []}
    for route in SERVICE_ROUTES:
        path = route["path"]
        compact_path = path.replace(f"{BASE_PATH}/", "")
        if not path.startswith(BASE_PATH):
            groups["health"].append(compact_path)
        elif "/admin/" in path:
            groups["admin"].append(compact_path)
        elif path.endswith(("/view", "/click", "/analytics")):
            groups["analytics"].append(compact_path)
        elif path.endswith(("/payment", "/approve", "/reject", "/cancel", "/renew")):
            groups["lifecycle"].append(compact_path)
        else:
            groups["campaigns"].append(compact_path)

    return {
        "route_count": len(SERVICE_ROUTES),
        "base_path": BASE_PATH,
        **{name: ",".join(paths) for name, paths in groups.items()},
        "public_count": sum(1 for r in SERVICE_ROUTES if not r["auth_required"]),
        "protected_count": sum(1 for r in SERVICE_ROUTES if r["auth_required"]),
    }


# Service metadata
SERVICE_METADATA = {
    "service_name": "ad_campaign_service",
    "version": "1.0.0",
    "tags": ["v1", "advertising", "campaigns", "marketplace"],
    "capabilities": [
        "ad_pricing",
        "slot_rotation",
        "campaign_lifecycle",
        "auto_renewal",
        "expiry_warnings",
        "impression_tracking",
        "event_driven",
    ],
}
