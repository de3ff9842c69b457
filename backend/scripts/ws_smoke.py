"""Manual smoke test against a running server.

Usage:
    python backend/scripts/ws_smoke.py <token> <chat_id> [ws://localhost:3000]
"""
import asyncio
import json
import sys

import websockets


async def smoke(token: str, chat_id: str, base_url: str) -> None:
    async with websockets.connect(f"{base_url}/ws?token={token}") as ws:
        # first frame after connect is the online list
        online = json.loads(await ws.recv())
        print(f"Online: {[u['name'] for u in online.get('users', [])]}")

        await ws.send(json.dumps({"type": "join_chat", "chatId": chat_id}))
        await ws.send(json.dumps({
            "type": "send_message",
            "chatId": chat_id,
            "content": "Hello from Python!",
            "messageType": "text",
        }))

        while True:
            frame = json.loads(await ws.recv())
            print(f"Received: {frame}")
            if frame["type"] in ("new_message", "error"):
                break


if __name__ == "__main__":
    if len(sys.argv) < 3:
        sys.exit(__doc__)
    asyncio.run(smoke(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else "ws://localhost:3000"))
