"""
Validation utilities for common validation patterns.
Centralizes validation logic shared by the relay and the client.
"""

import re
from typing import Dict, Any, List, Optional

from peerlink.core.config import ROLES


class ValidationUtils:
    """Common validation utilities."""
    
    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None
    
    @staticmethod
    def validate_role(role: Any) -> Optional[str]:
        """Validate a JOIN_ROOM role."""
        if role not in ROLES:
            return f"Unknown role: {role!r}"
        return None
    
    @staticmethod
    def sanitize_room_id(room_id: Any, max_length: int) -> str:
        """Strip a room id to [A-Za-z0-9_-] and truncate it; may return ''."""
        if not isinstance(room_id, str):
            return ''
        return re.sub(r'[^A-Za-z0-9_-]', '', room_id)[:max_length]
    
    @staticmethod
    def validate_ice_server(descriptor: Any) -> Optional[str]:
        """Validate one traversal-server descriptor ({urls, username?, credential?})."""
        if not isinstance(descriptor, dict):
            return "Descriptor is not an object"
        urls = descriptor.get('urls')
        if isinstance(urls, str):
            urls = [urls]
        if not isinstance(urls, list) or not urls or not all(isinstance(u, str) and u for u in urls):
            return "Descriptor has no usable urls"
        for key in ('username', 'credential'):
            if descriptor.get(key) is not None and not isinstance(descriptor[key], str):
                return f"Descriptor {key} must be a string"
        return None
