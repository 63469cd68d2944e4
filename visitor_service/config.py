"""
Configuration module for Visitor Service.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
from dataclasses import dataclass
from datetime import tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for Visitor Service.

    Firebase Integration:
        firebase_project_id: Firestore project holding `visitors` and `users`
        firebase_database_url: Realtime Database URL holding `status` heartbeats
            (e.g., https://my-app-default-rtdb.firebaseio.com)
        firebase_credentials: Service account JSON file (empty = Application
            Default Credentials)
        request_timeout: Seconds before a Firebase request is abandoned

    Service Identity:
        service_name: Name of this service instance (log context)
        http_port: Port for Flask HTTP server

    Snapshot:
        refresh_interval: Seconds between snapshot pulls
        timezone: IANA zone for calendar-day grouping (empty = host local zone)

    Policy:
        overdue_threshold_hours: Hours after check-in before a visitor is overdue
        online_ttl_seconds: Maximum heartbeat age still trusted as online
        away_minutes: Offline users seen within this window show as away
        recently_offline_minutes: Offline users seen within this window show
            as recently offline

    System:
        debug_mode: Enable debug logging
    """

    # Firebase
    firebase_project_id: str
    firebase_database_url: str
    firebase_credentials: str
    request_timeout: float

    # Service
    service_name: str
    http_port: int

    # Snapshot
    refresh_interval: int
    timezone: str

    # Policy
    overdue_threshold_hours: float
    online_ttl_seconds: float
    away_minutes: float
    recently_offline_minutes: float

    # System
    debug_mode: bool

    def get_tzinfo(self) -> Optional[tzinfo]:
        """
        Resolve the configured calendar zone.

        Returns:
            ZoneInfo for the configured name, or None for the host local zone
        """
        if not self.timezone:
            return None
        return ZoneInfo(self.timezone)


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    return Config(
        # Firebase
        firebase_project_id=os.getenv('FIREBASE_PROJECT_ID', ''),
        firebase_database_url=os.getenv('FIREBASE_DATABASE_URL', '').rstrip('/'),
        firebase_credentials=os.getenv('FIREBASE_CREDENTIALS', ''),
        request_timeout=float(os.getenv('REQUEST_TIMEOUT', '10')),

        # Service
        service_name=os.getenv('SERVICE_NAME', 'visitor-dashboard'),
        http_port=int(os.getenv('HTTP_PORT', '5050')),

        # Snapshot
        refresh_interval=int(os.getenv('REFRESH_INTERVAL', '30')),
        timezone=os.getenv('DASHBOARD_TIMEZONE', ''),

        # Policy
        overdue_threshold_hours=float(os.getenv('OVERDUE_HOURS', '12')),
        online_ttl_seconds=float(os.getenv('ONLINE_TTL', '120')),
        away_minutes=float(os.getenv('AWAY_MINUTES', '5')),
        recently_offline_minutes=float(os.getenv('RECENTLY_OFFLINE_MINUTES', '60')),

        # System
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )
