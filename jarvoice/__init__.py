"""
Jarvoice - personal voice assistant package

Root package for Jarvoice, the Russian-speaking "Jarvis" style assistant.
It hosts shared helpers plus the assistant subpackage that drives one
voice session: speech capture, local intent matching, the remote command
fallback, and speech playback with conversation-mode auto-restart.

Core modules:
- utils: Env parsing and small async helpers
- assistant: Voice session state machine, engines, backend client and MQTT surface
"""

__version__ = "0.4.2"
