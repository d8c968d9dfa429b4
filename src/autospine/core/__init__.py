"""Core primitives shared by the dispatcher and scheduler: errors, logging, settings, time."""
