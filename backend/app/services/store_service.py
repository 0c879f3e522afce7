from __future__ import annotations

from flask import current_app

from app.errors import DomainError, NotFoundError
from app.extensions import db
from app.models import Store, StoreConfig
from app.services.concurrency import lock_for_update, run_with_retry


class StoreError(DomainError):
    """Raised when store operations fail."""
    code = "STORE_ERROR"


TIER_QUANTITY_PER_LINE = "per_line"
TIER_QUANTITY_CART_TOTAL = "cart_total"

# Store-level flags with their defaults (values are stored as text)
STORE_SETTING_DEFAULTS = {
    "tier_quantity_mode": TIER_QUANTITY_PER_LINE,
    "reserve_on_checkout": "false",
    "reservation_ttl_hours": None,  # None -> Config.RESERVATION_TTL_HOURS
}

_SETTING_CHOICES = {
    "tier_quantity_mode": {TIER_QUANTITY_PER_LINE, TIER_QUANTITY_CART_TOTAL},
    "reserve_on_checkout": {"true", "false"},
}


def create_store(name: str, code: str | None = None) -> Store:
    def _op():
        if not name or not name.strip():
            raise StoreError("Store name is required")

        if code and db.session.query(Store).filter_by(code=code).first():
            raise StoreError(f"Store code {code!r} already in use")

        store = Store(name=name.strip(), code=code)
        db.session.add(store)
        db.session.commit()
        return store

    return run_with_retry(_op)


def get_store(store_id: int) -> Store | None:
    return db.session.query(Store).filter_by(id=store_id).first()


def require_active_store(store_id: int) -> Store:
    store = get_store(store_id)
    if store is None or not store.is_active:
        raise NotFoundError("Store not found or inactive", details={"store_id": store_id})
    return store


def list_stores() -> list[Store]:
    return db.session.query(Store).order_by(Store.name.asc()).all()


def _validate_setting(key: str, value: str | None) -> None:
    if key not in STORE_SETTING_DEFAULTS:
        raise StoreError(f"Unknown store setting: {key}")
    if value is None:
        return
    choices = _SETTING_CHOICES.get(key)
    if choices and value not in choices:
        raise StoreError(f"{key} must be one of: {', '.join(sorted(choices))}")
    if key == "reservation_ttl_hours":
        if not value.isdigit() or int(value) < 1:
            raise StoreError("reservation_ttl_hours must be a positive integer")


def set_store_config(store_id: int, key: str, value: str | None) -> StoreConfig:
    def _op():
        if not key:
            raise StoreError("Config key is required")
        _validate_setting(key, value)

        store = db.session.query(Store).filter_by(id=store_id).first()
        if not store:
            raise NotFoundError("Store not found", details={"store_id": store_id})

        config = lock_for_update(
            db.session.query(StoreConfig).filter_by(store_id=store_id, key=key)
        ).first()
        if config:
            config.value = value
        else:
            config = StoreConfig(store_id=store_id, key=key, value=value)
            db.session.add(config)

        db.session.commit()
        return config

    return run_with_retry(_op)


def get_store_configs(store_id: int) -> list[StoreConfig]:
    return db.session.query(StoreConfig).filter_by(store_id=store_id).order_by(StoreConfig.key.asc()).all()


def get_store_setting(store_id: int, key: str) -> str | None:
    """Stored value for key, or its default when unset."""
    config = db.session.query(StoreConfig).filter_by(store_id=store_id, key=key).first()
    if config is not None and config.value is not None:
        return config.value
    return STORE_SETTING_DEFAULTS.get(key)


def tier_quantity_mode(store_id: int) -> str:
    return get_store_setting(store_id, "tier_quantity_mode") or TIER_QUANTITY_PER_LINE


def reserve_on_checkout(store_id: int) -> bool:
    return (get_store_setting(store_id, "reserve_on_checkout") or "false") == "true"


def reservation_ttl_hours(store_id: int) -> int:
    value = get_store_setting(store_id, "reservation_ttl_hours")
    if value:
        return int(value)
    return int(current_app.config.get("RESERVATION_TTL_HOURS", 24))
