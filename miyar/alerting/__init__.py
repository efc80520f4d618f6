"""
MIYAR Platform Alerting.

Components:
- schemas: Alert types, severities, platform alerts and engine inputs
- engine: Six independent rules producing alert candidates
- dedup: Suppress candidates matching an active alert (type + project set)
- channels: Best-effort email delivery for critical / high alerts
"""
