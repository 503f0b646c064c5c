"""
issue-loop — control plane

File: src/issue_loop/control_plane/__init__.py
Last updated: 2026-10-17

Purpose
- Scheduling, retry accounting, discovery, compaction and the main loop.

Non-functional requirements
- Keep this module import-light: knowledge and review planes import
  ``control_plane.discovery`` and ``control_plane.compaction`` directly, and the
  controller imports them back. Import the controller from its own module.
"""
