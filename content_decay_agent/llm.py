from __future__ import annotations

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from content_decay_agent.config import AgentConfig


def build_llm(config: AgentConfig) -> BaseChatModel:
    if not config.llm_enabled:
        raise RuntimeError(
            "LLM config missing. Required: OPENAI_API_KEY and OPENAI_MODEL "
            "(plus AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_VERSION for Azure)."
        )

    common = {
        "temperature": config.llm_temperature,
        "max_tokens": max(200, int(config.llm_max_output_tokens)),
        "timeout": max(30, int(config.llm_timeout_sec)),
        "max_retries": max(0, int(config.llm_max_retries)),
    }
    if config.azure_llm_enabled:
        return AzureChatOpenAI(
            azure_endpoint=config.azure_openai_endpoint,
            api_key=config.openai_api_key,
            openai_api_version=config.azure_openai_api_version,
            azure_deployment=config.openai_model,
            **common,
        )
    return ChatOpenAI(
        model=config.openai_model,
        api_key=config.openai_api_key,
        **common,
    )
