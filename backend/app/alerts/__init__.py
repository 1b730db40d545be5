"""
alerts — SOS alert lifecycle.

Sub-modules:
    channels/       — location providers, e-mail gateway, verification anchors
    alert_service   — AlertEngine: trigger, fan-out, resolve / false alarm
    countdown       — cancellable pre-trigger countdown
    store           — newest-first, append-only alert history
    models          — data structures shared across the system
"""
