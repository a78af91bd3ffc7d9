"""
Hybrid Context MCP Server.

Transport: stdio only.

Expected MCP Tool Return Format:
{
    "ok": bool,
    "results": Any,          # Present if ok is True
    "error": str            # Present if ok is False
}
"""

import argparse
import logging
import os
import signal
import sys
from typing import Annotated, Any, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .common.config import load_config
from .common.errors import ConfigError
from .retriever.assembler import AssembledContext
from .service import HybridContextService

logger = logging.getLogger("hybrid.mcp")

MAX_LIST_LIMIT = 100


def _context_payload(context: AssembledContext) -> Dict[str, Any]:
    result = context.result
    return {
        "context": context.render(),
        "blocks": [
            {"tag": b.tag, "text": b.text, "tokens": b.tokens, "score": b.score}
            for b in context.blocks
        ],
        "total_tokens": context.total_tokens,
        "token_budget": context.token_budget,
        "confidence": result.confidence if result else 0.0,
        "strategy": result.strategy if result else None,
        "layer_breakdown": result.layer_breakdown if result else {},
        "timed_out": result.timed_out if result else [],
    }


class MCPServerApp:
    """
    Main application class for the MCP server.

    Wraps a HybridContextService; every tool resolves to the
    {"ok": ..., "results" | "error": ...} envelope.
    """
    def __init__(
            self,
            service: HybridContextService,
            mcp_server_name: str = "hybrid_context",
        ) -> None:
        """
        Initializes the MCPServerApp with the given service and server name.
        Args:
            service (HybridContextService): The retrieval core facade.
            mcp_server_name (str): The name of the MCP server.
        """
        self.service = service
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: Retrieve Context ---------- #
        @self.mcp.tool(
            name="retrieve_context",
            description=(
                "Assemble a token-budgeted context window for a user query from saved memories, "
                "the knowledge index and live web search. Blocks are tagged by provenance."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_retrieve_context(
            query: Annotated[str, Field(description="the user's query")],
            thread_id: Annotated[str, Field(description="conversation thread identifier")],
            user_id: Annotated[str, Field(description="user identifier owning the memories")],
            token_budget: Annotated[Optional[int], Field(description="token budget override")] = None,
        ) -> Dict[str, Any]:
            """
            MCP tool to assemble context for a query.

            Args:
                query (str): The user's query.
                thread_id (str): Conversation thread.
                user_id (str): Memory owner.
                token_budget (int): Optional budget override.

            Returns:
                Dict[str, Any]: Rendered context, blocks and retrieval summary.
            """
            if not query or not query.strip():
                return {"ok": False, "error": "`query` must not be empty."}
            if token_budget is not None and token_budget <= 0:
                return {"ok": False, "error": "`token_budget` must be positive."}
            context = await self.service.retrieve_context(query, thread_id, user_id, token_budget)
            return {"ok": True, "results": _context_payload(context)}

        # ---------- MCP Tools: Record Message ---------- #
        @self.mcp.tool(
            name="record_message",
            description="Append a conversation turn (user or assistant) to a thread.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_record_message(
            thread_id: Annotated[str, Field(description="conversation thread identifier")],
            user_id: Annotated[str, Field(description="user identifier")],
            role: Annotated[str, Field(description="user, assistant or system")],
            content: Annotated[str, Field(description="message text")],
        ) -> Dict[str, Any]:
            if role not in ("user", "assistant", "system"):
                return {"ok": False, "error": f"Unknown role: {role}"}
            if not content or not content.strip():
                return {"ok": False, "error": "`content` must not be empty."}
            message = await self.service.record_message(thread_id, user_id, role, content)
            return {"ok": True, "results": message.model_dump(mode="json")}

        # ---------- MCP Tools: Remember ---------- #
        @self.mcp.tool(
            name="remember",
            description="Save a fact or preference about the user as a tier1 memory.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_remember(
            user_id: Annotated[str, Field(description="user identifier")],
            content: Annotated[str, Field(description="the fact to remember")],
            thread_id: Annotated[Optional[str], Field(description="thread the fact came from")] = None,
            priority: Annotated[float, Field(description="importance within [0, 1]")] = 0.9,
        ) -> Dict[str, Any]:
            """
            MCP tool to persist an explicit memory.

            Returns:
                Dict[str, Any]: The stored memory record.
            """
            if not content or not content.strip():
                return {"ok": False, "error": "`content` must not be empty."}
            if not 0.0 <= priority <= 1.0:
                return {"ok": False, "error": "`priority` must be within [0, 1]."}
            memory = await self.service.remember(user_id, content, thread_id=thread_id, priority=priority)
            return {"ok": True, "results": memory.model_dump(mode="json")}

        # ---------- MCP Tools: Forget ---------- #
        @self.mcp.tool(
            name="forget",
            description="Soft-delete a saved memory by id.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_forget(
            user_id: Annotated[str, Field(description="user identifier")],
            memory_id: Annotated[str, Field(description="memory id (mem_...)")],
        ) -> Dict[str, Any]:
            deleted = await self.service.forget(user_id, memory_id)
            if not deleted:
                return {"ok": False, "error": f"Memory '{memory_id}' not found."}
            return {"ok": True, "results": {"memory_id": memory_id, "deleted": True}}

        # ---------- MCP Tools: List Memories ---------- #
        @self.mcp.tool(
            name="list_memories",
            description="List a user's most recent saved memories.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_list_memories(
            user_id: Annotated[str, Field(description="user identifier")],
            limit: Annotated[int, Field(description="maximum number of memories")] = 20,
        ) -> Dict[str, Any]:
            if not 1 <= limit <= MAX_LIST_LIMIT:
                return {"ok": False, "error": f"`limit` must be between 1 and {MAX_LIST_LIMIT}."}
            memories = await self.service.list_memories(user_id, limit)
            return {"ok": True, "results": [m.model_dump(mode="json") for m in memories]}

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the Hybrid Context MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("MCP_SERVER_NAME", "hybrid_context"),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("HYBRID_CONFIG", None),
        help="Path to config.json (default: ~/.hybrid/config.json).",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("HYBRID_LOG_LEVEL", "INFO"),
        help="Logging level.",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    # stdout carries the stdio transport
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(os.path.expanduser(args.config) if args.config else None)
    except ConfigError as e:
        logger.error("%s", e)
        return 2

    app = MCPServerApp(
        service=HybridContextService.from_config(config),
        mcp_server_name=args.server_name,
    )

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
