"""Real-time chat: WebSocket gateway and HTTP chat API."""
