"""Sample actions: ``createUser`` and ``createOrder``.

Used by ``python -m formflow`` and by the tests. The handlers simulate a
short database round trip; ``createUser`` rejects the username ``fail`` the
way a uniqueness check would.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from formflow.config import FormflowConfig
from formflow.errors import SubmissionError
from formflow.registry import ActionRegistry

CREATE_USER: Dict[str, Any] = {
    "id": "createUser",
    "label": "Create User",
    "formJson": [
        {"name": "username", "type": "string", "label": "Username", "required": True, "minLength": 3,
         "placeholder": "Choose a username"},
        {"name": "email", "type": "email", "label": "Email", "required": True,
         "placeholder": "you@example.com"},
        {"name": "role", "type": "select", "label": "Role", "required": True,
         "options": [{"value": "user", "label": "User"}, {"value": "admin", "label": "Admin"}],
         "default": "user"},
        {"name": "age", "type": "integer", "label": "Age", "minimum": 18, "maximum": 120},
        {"name": "bio", "type": "textarea", "label": "Bio", "maxLength": 500},
    ],
}

CREATE_ORDER: Dict[str, Any] = {
    "id": "createOrder",
    "label": "Create Order",
    "formJson": [
        {"name": "productId", "type": "string", "label": "Product ID", "required": True},
        {"name": "quantity", "type": "integer", "label": "Quantity", "required": True, "minimum": 1},
        {"name": "priority", "type": "select", "label": "Priority",
         "options": [{"value": "low", "label": "Low"}, {"value": "normal", "label": "Normal"},
                     {"value": "high", "label": "High"}],
         "default": "normal"},
        {"name": "expressShipping", "type": "boolean", "label": "Express Shipping", "default": False},
    ],
}

SAMPLE_ACTIONS: List[Dict[str, Any]] = [CREATE_USER, CREATE_ORDER]


async def create_user(values: Dict[str, Any], delay: float = 0.05) -> Dict[str, Any]:
    await asyncio.sleep(delay)
    if str(values.get("username", "")).lower() == "fail":
        raise SubmissionError(f"Server rejected username \"{values['username']}\"")
    result = {"id": f"user_{uuid.uuid4().hex[:12]}"}
    result.update(values)
    result["createdAt"] = datetime.now(timezone.utc).isoformat()
    return result


async def create_order(values: Dict[str, Any], delay: float = 0.03) -> Dict[str, Any]:
    await asyncio.sleep(delay)
    result = {"orderId": f"order_{uuid.uuid4().hex[:12]}"}
    result.update(values)
    return result


def sample_registry(config: Optional[FormflowConfig] = None) -> ActionRegistry:
    """A registry holding the sample actions with their handlers."""
    registry = ActionRegistry(config)
    registry.load(SAMPLE_ACTIONS, handlers={"createUser": create_user, "createOrder": create_order})
    return registry


__all__ = [
    "CREATE_USER",
    "CREATE_ORDER",
    "SAMPLE_ACTIONS",
    "create_user",
    "create_order",
    "sample_registry",
]
