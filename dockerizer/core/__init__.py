"""Agent orchestration: tools, inspectors, dispatcher and the retry loop."""
