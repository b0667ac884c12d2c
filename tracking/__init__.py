"""
Tracking package - session status, durations, tasks and screenshot counts.

Pure accounting plus the local services the engine reads from. No UI and
no network code; remote calls live in the sync package.
"""
