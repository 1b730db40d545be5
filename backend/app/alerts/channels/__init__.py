"""
channels — Boundaries to the outside world used by the alert engine.

    location      — async get_current_position() → GeoLocation
    email_alert   — async notify(address, sender, location, ts) → bool
    verification  — async record(payload) → reference

Channels hold no alert state. Timeouts and failure accounting live in
alert_service.
"""
