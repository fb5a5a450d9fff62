"""web-evidence - web evidence retrieval

Simple CLI for running the pipeline against a prompt.
"""

import argparse
import asyncio

from web_evidence.agents.orchestrator import GatePolicy, PipelineOptions, run_web_search_pipeline
from web_evidence.models.events import PipelineEvent
from web_evidence.research_core.evidence.chunker import ExcerptStrategy


def print_event(event: PipelineEvent) -> None:
    event_type = event.event.value
    data = event.data

    if event_type == "plan_ready":
        print(f"\n[*] Queries ({'search' if data.get('use_web_search') else 'no search'}):")
        for i, query in enumerate(data.get("queries", []), 1):
            print(f"  {i}. {query}")
        if data.get("reason"):
            print(f"     Reason: {data['reason']}")

    elif event_type == "serp_fetched":
        print(f"  [+] SERP {data.get('query')!r}: {data.get('results_count')} results")

    elif event_type == "page_fetched":
        marker = "+" if data.get("status") == "ok" else "-"
        print(f"  [{marker}] {data.get('status')}: {data.get('url')}")

    elif event_type == "error":
        print(f"\n[!] Error: {data.get('message', 'Unknown error')}")


async def run_pipeline(prompt: str, options: PipelineOptions):
    """Run the pipeline on the given prompt and print a summary."""
    print(f"Prompt: {prompt}")
    print("-" * 50)

    result = await run_web_search_pipeline(prompt, options, event_sink=print_event)

    if result.skipped:
        print(f"\n[~] Skipped: {result.skip_reason}")
        return

    print(f"\n[*] Evidence {'sufficient' if result.gate.enough_evidence else 'insufficient'}")
    print(f"   Sources: {len(result.sources)}")
    for source in result.sources:
        print(f"   - {source['title'][:70]} ({source['url']})")
    print(f"   Chunks: {len(result.chunks)}")
    for chunk in result.chunks:
        print(f"   - [{chunk.score}] {chunk.text[:120]}...")
    print(f"   SERP requests: {result.cost.serp_requests} (${result.cost.serp_estimated_usd:.4f})")


def main():
    parser = argparse.ArgumentParser(description="Web evidence retrieval")
    parser.add_argument("--query", "-q", required=True, help="User prompt")
    parser.add_argument("--queries", type=int, default=1, help="Number of search queries")
    parser.add_argument("--mode", choices=["snippets", "balanced", "rich", "auto"], default="auto")
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in ExcerptStrategy],
        default=ExcerptStrategy.SEQUENTIAL.value,
    )
    parser.add_argument("--no-skip", action="store_true", help="Search even when the planner says no")
    parser.add_argument("--llm-gate", action="store_true", help="Judge evidence with the LLM gate")

    args = parser.parse_args()

    options = PipelineOptions(
        query_count=args.queries,
        excerpt_mode=args.mode,
        excerpt_strategy=ExcerptStrategy(args.strategy),
        allow_skip=False if args.no_skip else None,
        gate_policy=GatePolicy.LLM if args.llm_gate else GatePolicy.NON_EMPTY,
        stop_when_enough=args.llm_gate,
    )
    asyncio.run(run_pipeline(args.query, options))


if __name__ == "__main__":
    main()
