"""
Services for the Memory Loop system.

This package contains the capture, processing, structuring and storage
services that make up the voice-memory pipeline.
"""
