"""Token usage dashboard engine for OpenClaw and Codex agent session logs."""
