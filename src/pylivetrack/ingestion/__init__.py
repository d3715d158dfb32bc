"""Ingestion helpers.

Provider payloads (MQTT messages, HTTP gateway responses, scripted
fixes) are normalized here before they become :class:`~pylivetrack.models.Fix`
values.
"""
