#!/usr/bin/env python3
"""Tiny MCP client that drives the server over stdio: import a RIS record, then save it.

Examples:
    python scripts/smoke_client.py --no-save
    python scripts/smoke_client.py --target connector --title "Connector Save Test"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import re
import sys
from typing import List

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


def build_ris(title: str) -> str:
    return "\n".join(
        [
            "TY  - JOUR",
            f"TI  - {title}",
            "AU  - Doe, Jane",
            "PY  - 2020",
            "JO  - Example Journal",
            "ER  -",
        ]
    )


def _result_block(text: str) -> dict:
    m = re.search(r"```json\n(.*?)\n```", text, flags=re.DOTALL)
    if not m:
        raise RuntimeError(f"No result block in tool output:\n{text}")
    return json.loads(m.group(1))


async def run(target: str, title: str, skip_save: bool) -> int:
    params = StdioServerParameters(
        command=sys.executable,
        args=["-m", "translation_server_mcp.cli"],
        env=dict(os.environ),
    )
    async with stdio_client(params) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()
            imported = await session.call_tool(
                "translate_import", {"data": build_ris(title), "mimeType": "text/plain"}
            )
            items = _result_block(imported.content[0].text).get("items")
            if not items:
                print(imported.content[0].text)
                return 1
            if skip_save:
                print("translate_import ok; skipping save (use without --no-save to store items)")
                return 0
            saved = await session.call_tool("save_to_zotero", {"target": target, "items": items})
            print(saved.content[0].text)
    return 0


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Smoke-test translate_import and save_to_zotero over stdio")
    p.add_argument("--target", default=os.getenv("ZOTERO_TARGET", "connector"), choices=["connector", "local", "web"])
    p.add_argument("--title", default=os.getenv("TEST_ITEM_TITLE", "Connector Save Test"))
    p.add_argument("--no-save", action="store_true", help="Only run translate_import")
    args = p.parse_args(argv)
    return asyncio.run(run(args.target, args.title, args.no_save))


if __name__ == "__main__":
    raise SystemExit(main())
