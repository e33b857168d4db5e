"""LangGraph state graph for the SMART standalone launch.

Flow: authorize → (present_sandbox →) present_browser → validate_callback
→ exchange_token → fetch_patient → fetch_conditions
"""

from __future__ import annotations

from langgraph.graph import END, StateGraph

from smartlaunch.launch.nodes import (
    authorize,
    exchange_token,
    fetch_conditions,
    fetch_patient,
    present_browser,
    present_sandbox,
    validate_callback,
)
from smartlaunch.launch.state import LaunchState


def _route_presentation(state: LaunchState) -> str:
    """Conditional edge: scripted sandbox sign-in or the browser presenter."""
    if state.get("use_sandbox", False):
        return "present_sandbox"
    return "present_browser"


def _route_after_sandbox(state: LaunchState) -> str:
    """Conditional edge: the operator may hand the sandbox over to the browser."""
    if state.get("callback_url"):
        return "validate_callback"
    return "present_browser"


def build_graph():
    """Build and return the compiled launch graph."""
    graph = StateGraph(LaunchState)

    # Add nodes
    graph.add_node("authorize", authorize)
    graph.add_node("present_sandbox", present_sandbox)
    graph.add_node("present_browser", present_browser)
    graph.add_node("validate_callback", validate_callback)
    graph.add_node("exchange_token", exchange_token)
    graph.add_node("fetch_patient", fetch_patient)
    graph.add_node("fetch_conditions", fetch_conditions)

    # Set entry point
    graph.set_entry_point("authorize")

    # Wire edges
    graph.add_conditional_edges("authorize", _route_presentation)
    graph.add_conditional_edges("present_sandbox", _route_after_sandbox)
    graph.add_edge("present_browser", "validate_callback")
    graph.add_edge("validate_callback", "exchange_token")
    graph.add_edge("exchange_token", "fetch_patient")
    graph.add_edge("fetch_patient", "fetch_conditions")
    graph.add_edge("fetch_conditions", END)

    return graph.compile()
