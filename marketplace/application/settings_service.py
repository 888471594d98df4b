import json
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from marketplace.domain.models import Setting, SettingType
from marketplace.infrastructure.cache import SettingsCache
from marketplace.core.logging_config import get_logger
from marketplace.core_settings import get_settings
from .delivery import DeliverySettings, DeliveryQuote, calculate_delivery_fee

logger = get_logger(__name__)

DELIVERY_ENABLED = "delivery_enabled"
DELIVERY_FEE = "delivery_fee"
FREE_DELIVERY_THRESHOLD = "free_delivery_threshold"

CACHE_PREFIX = "settings:"

DEFAULT_SETTINGS = [
    {"key": DELIVERY_FEE, "name": "Delivery Fee", "value": "150",
     "type": SettingType.NUMBER.value, "category": "delivery",
     "description": "Standard delivery fee"},
    {"key": FREE_DELIVERY_THRESHOLD, "name": "Free Delivery Threshold", "value": "2000",
     "type": SettingType.NUMBER.value, "category": "delivery",
     "description": "Minimum order amount for free delivery"},
    {"key": DELIVERY_ENABLED, "name": "Delivery Enabled", "value": "true",
     "type": SettingType.BOOLEAN.value, "category": "delivery",
     "description": "Whether delivery service is enabled"},
]

def parse_setting_value(raw: str, type_: Optional[str]) -> Any:
    if type_ == SettingType.NUMBER.value:
        return Decimal(raw)
    if type_ == SettingType.BOOLEAN.value:
        return raw.strip().lower() == "true"
    if type_ in (SettingType.JSON.value, SettingType.ARRAY.value):
        return json.loads(raw)
    return raw

def serialize_setting_value(value: Any, type_: str) -> str:
    if type_ == SettingType.BOOLEAN.value:
        if isinstance(value, str):
            return "true" if value.strip().lower() == "true" else "false"
        return "true" if value else "false"
    if type_ == SettingType.NUMBER.value:
        return str(Decimal(str(value)))
    if type_ in (SettingType.JSON.value, SettingType.ARRAY.value):
        return json.dumps(value)
    return str(value)

def infer_setting_type(value: Any) -> str:
    if isinstance(value, bool):
        return SettingType.BOOLEAN.value
    if isinstance(value, (int, float, Decimal)):
        return SettingType.NUMBER.value
    if isinstance(value, dict):
        return SettingType.JSON.value
    if isinstance(value, (list, tuple)):
        return SettingType.ARRAY.value
    return SettingType.STRING.value

def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)

def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None

class SettingsService:
    """Typed key/value settings read through a TTL cache.

    Writes go straight to the table and then invalidate the cached key, so a
    changed value becomes visible at the latest when the TTL runs out.
    """

    def __init__(self, db: Session, cache: SettingsCache):
        self.db = db
        self.cache = cache

    def get(self, key: str, default: Any = None) -> Any:
        cache_key = f"{CACHE_PREFIX}{key}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return parse_setting_value(cached["value"], cached["type"])

        setting = self.db.scalars(
            select(Setting).where(Setting.key == key, Setting.is_active.is_(True))
        ).first()
        if setting is None:
            return default

        self.cache.set(cache_key, {"value": setting.value, "type": setting.type})
        return parse_setting_value(setting.value, setting.type)

    def get_delivery_settings(self) -> DeliverySettings:
        values = {}
        for key in (DELIVERY_ENABLED, DELIVERY_FEE, FREE_DELIVERY_THRESHOLD):
            try:
                values[key] = self.get(key)
            except (ValueError, InvalidOperation, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable setting {key}: {e}")
                values[key] = None
        return DeliverySettings(
            is_delivery_enabled=_as_bool(values[DELIVERY_ENABLED]),
            delivery_fee=_as_decimal(values[DELIVERY_FEE]),
            free_delivery_threshold=_as_decimal(values[FREE_DELIVERY_THRESHOLD]),
        )

    def quote_delivery(self, subtotal: Decimal) -> DeliveryQuote:
        return calculate_delivery_fee(
            subtotal, self.get_delivery_settings(), currency=get_settings().CURRENCY_SYMBOL
        )

    def _upsert(self, key: str, value: Any) -> Setting:
        setting = self.db.scalars(select(Setting).where(Setting.key == key)).first()
        if setting is None:
            type_ = infer_setting_type(value)
            setting = Setting(
                key=key,
                name=key.replace("_", " ").title(),
                value=serialize_setting_value(value, type_),
                type=type_,
                is_active=True,
            )
            self.db.add(setting)
        else:
            setting.value = serialize_setting_value(value, setting.type or infer_setting_type(value))
        return setting

    def set_setting(self, key: str, value: Any) -> None:
        self._upsert(key, value)
        self.db.commit()
        self.cache.delete(f"{CACHE_PREFIX}{key}")
        logger.info(f"Setting updated: {key}", extra={'extra_fields': {'key': key}})

    def update_delivery_settings(self, is_delivery_enabled: bool, delivery_fee: Decimal,
                                 free_delivery_threshold: Decimal) -> DeliverySettings:
        updates = {
            DELIVERY_ENABLED: is_delivery_enabled,
            DELIVERY_FEE: delivery_fee,
            FREE_DELIVERY_THRESHOLD: free_delivery_threshold,
        }
        for key, value in updates.items():
            self._upsert(key, value)
        self.db.commit()
        for key in updates:
            self.cache.delete(f"{CACHE_PREFIX}{key}")
        logger.info("Delivery settings updated", extra={'extra_fields': {k: str(v) for k, v in updates.items()}})
        return self.get_delivery_settings()

    def initialize_default_settings(self) -> int:
        """Insert missing default settings; returns how many were created."""
        existing = set(self.db.scalars(select(Setting.key)).all())
        created = 0
        for data in DEFAULT_SETTINGS:
            if data["key"] not in existing:
                self.db.add(Setting(**data))
                created += 1
        if created:
            self.db.commit()
        return created

    def clear_cache(self) -> None:
        self.cache.delete_prefix(CACHE_PREFIX)
