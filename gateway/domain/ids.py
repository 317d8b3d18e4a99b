from __future__ import annotations

import importlib

ulid_module = importlib.import_module("ulid")


def new_lease_id() -> str:
    return f"lease_{ulid_module.new().str}"


def new_cancellation_public_id() -> str:
    return f"cxl_{ulid_module.new().str}"


def new_listing_public_id() -> str:
    return f"lst_{ulid_module.new().str}"
