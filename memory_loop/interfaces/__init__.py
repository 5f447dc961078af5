"""
Abstract interfaces for the Memory Loop system.

Providers wrap external capabilities (microphone, transcoder, language
model, durable storage); services describe the seams between the core
components.
"""
