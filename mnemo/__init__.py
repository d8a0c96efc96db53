"""Mnemo: a WhatsApp-first AI executive assistant.

Architecture Overview
=====================

The assistant is a **LangGraph** state machine with two core nodes:

1. **chatbot**: Invokes Claude with the per-turn system prompt, an optional
   "previous relevant information" message recalled from long-term memory, and
   the checkpointed thread history. The LLM decides whether to answer or call
   a tool.

2. **tools**: Executes the tool calls requested by the LLM (Google Calendar,
   Google Docs, Gmail, GitHub, LinkedIn, long-term memory). Results are fed
   back to the chatbot node as plain text.

Routing: chatbot → (tool calls?) → tools → chatbot (loop until no tool calls → END)

Key Design Decisions
--------------------
- **Per-request tools**: every tool is built with the requesting user's id
  captured in its closure. There is no process-wide "current user".
- **Typed envelopes**: each capability returns a ``ToolResult``
  (``success``/``data``/``error``/``code``); adapters render it as text for
  the model and never raise into the agent loop.
- **Credentials**: the ``CredentialResolver`` turns ``(user, provider)`` into an
  access token, refreshing Google tokens via google-auth when they expire.
- **Memory**: mem0 behind a ``MemoryService`` that retries transient failures a
  bounded number of times and degrades to "no memory" instead of failing.
- **Threads**: one LangGraph thread per user, created lazily with an atomic
  insert guarded by a UNIQUE constraint.
- **Channels**: web chat streams tokens; WhatsApp output goes through the
  ``whatsapp.formatter`` parse-fallback chain and hard length truncation.

Package Structure
-----------------
- ``mnemo/agent.py``: LangGraph StateGraph and the ``Assistant`` runtime
- ``mnemo/context.py``: per-turn context assembly
- ``mnemo/config.py``: Centralized configuration from environment variables
- ``mnemo/prompts.py``: Agent, WhatsApp and briefing prompts
- ``mnemo/preferences.py``: Typed user preferences
- ``mnemo/briefing.py``: Morning briefing generation (plain LLM path)
- ``mnemo/server.py``: FastAPI application
- ``mnemo/main.py``: CLI (chat loop and briefing run)
- ``mnemo/services/``: Stores, credentials, memory, provider clients, metrics
- ``mnemo/tools/``: LangChain tool adapters
- ``mnemo/whatsapp/``: Response formatter, Cloud API client, webhook handler
- ``mnemo/api/``: FastAPI routes and Pydantic schemas
"""
