"""Tool-using chat.

A bounded model/tool loop per turn:
- tool catalog fetched from the configured providers at startup
- tool calls dispatched to the provider, or intercepted locally for repository analysis
- per-session transcript persisted with a TTL
"""
