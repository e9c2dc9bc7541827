"""
Real Functionality Tests Package.

This package contains tests that verify actual component behavior,
not just mock interactions. Tests focus on:
- Request building and response decoding over httpx.MockTransport
- SQLite persistence in a temporary directory
- Retry and reconnect loops driven by scripted failures

Mock vs Real Strategy:
- Mock: External APIs (Mastodon, OpenAI), the websocket connection
- Real: All internal logic, storage, retry orchestration
"""
