"""LLM access: model registry, agent factory, prompts and the SundayLLM client.

Import SundayLLM from sunday.llm.client; this package init stays free of
agent_framework imports so configuration can load without it.
"""
