"""
LLM Gateway Package

    from pdf_ingest.llm import LLMGateway

    gateway  = LLMGateway()
    response = await gateway.invoke(LLMGateway.build_messages(system, user))
"""

from pdf_ingest.llm.gateway import GatewayResponse, LLMGateway

__all__ = ["GatewayResponse", "LLMGateway"]
