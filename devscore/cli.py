"""
Command-line interface for devscore.

Provides commands to initialize the database, run evaluations, inspect
usage and migrate stored scores after a scale change.

Usage:
    devscore init-db                           # Create tables
    devscore health                            # Check dependencies
    devscore evaluate PROJECT_ID               # Evaluate one project
    devscore usage ACCOUNT_ID                  # Show plan and quota
    devscore migrate-scores --source-max 100   # Rescale stored scores
    devscore demo                              # In-memory end-to-end run
"""

import asyncio
import sys
from typing import Any

import click

from devscore.observability.logging import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """devscore - Deterministic project evaluation with usage gating."""
    setup_logging("DEBUG" if debug else None)


def _build_orchestrator(store: Any) -> Any:
    from devscore.evaluation.config import EvaluationConfig, EvaluatorConfig
    from devscore.evaluation.effects import default_dispatcher
    from devscore.evaluation.evaluator import AIEvaluator
    from devscore.evaluation.orchestrator import EvaluationOrchestrator
    from devscore.scoring import ScoreAggregator, ScoringConfig
    from devscore.usage.config import UsageConfig
    from devscore.usage.policy import UsagePolicy

    scoring = ScoringConfig()
    return EvaluationOrchestrator(
        store=store,
        evaluator=AIEvaluator(EvaluatorConfig(), scoring_config=scoring),
        aggregator=ScoreAggregator(scoring),
        policy=UsagePolicy(store, UsageConfig()),
        dispatcher=default_dispatcher(store),
        config=EvaluationConfig(),
    )


def _print_outcome(outcome: Any) -> None:
    project = outcome.project
    color = "green" if outcome.status == "evaluated" else "yellow"

    click.echo(f"\nProject {project.project_id}: {project.title}")
    click.echo("-" * 40)
    click.echo(click.style(f"  Status:      {outcome.status}", fg=color))
    click.echo(f"  Final score: {outcome.final_score}")
    if outcome.previous_score is not None:
        click.echo(f"  Previous:    {outcome.previous_score} ({outcome.score_delta:+d})")
    click.echo(f"  Version:     {project.evaluation_version}")
    click.echo(f"  History:     {len(project.evaluation_history)} archived")

    scores = outcome.evaluation.sub_scores.as_mapping()
    click.echo("  Sub-scores:  " + ", ".join(f"{k}={v}" for k, v in scores.items()))

    provenance = outcome.evaluation.provenance
    if provenance.is_fallback:
        click.echo(click.style(
            f"  Fallback:    {provenance.fallback_reason} (please resubmit later)",
            fg="yellow",
        ))
    usage = outcome.evaluation.token_usage
    if usage.total_tokens:
        click.echo(f"  Tokens:      {usage.total_tokens}")


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from devscore.storage.database import Database
    from devscore.storage.repository import PostgresEvaluationStore

    async def run():
        db = Database()
        await db.connect()
        try:
            store = PostgresEvaluationStore(db)
            await store.create_tables()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    from devscore.evaluation.config import EvaluatorConfig

    async def check():
        results: dict[str, bool] = {}

        try:
            from devscore.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        evaluator_config = EvaluatorConfig()
        results["evaluator_configured"] = evaluator_config.is_configured
        results["evaluator_live"] = not evaluator_config.simulate_failure

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))

        click.echo("-" * 40)

        if results["postgres"]:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.argument("project_id")
def evaluate(project_id: str) -> None:
    """Evaluate (or re-evaluate) a stored project.

    Exit code is 0 for both "evaluated" and "failed" outcomes; a failed
    outcome is saved and reported as degraded. Rejections exit with 1.
    """
    from devscore.errors import DevscoreError
    from devscore.storage.database import Database
    from devscore.storage.repository import PostgresEvaluationStore

    async def run() -> int:
        db = Database()
        await db.connect()
        try:
            store = PostgresEvaluationStore(db)
            orchestrator = _build_orchestrator(store)
            try:
                outcome = await orchestrator.evaluate(project_id)
            except DevscoreError as e:
                click.echo(click.style(f"Error: {e}", fg="red"))
                return 1
            _print_outcome(outcome)
            return 0
        finally:
            await db.close()

    sys.exit(asyncio.run(run()))


@main.command()
@click.argument("account_id")
def usage(account_id: str) -> None:
    """Show plan, quota and billing state for an account (read-only)."""
    from devscore.errors import AccountNotFoundError
    from devscore.storage.database import Database
    from devscore.storage.repository import PostgresEvaluationStore
    from devscore.usage.policy import UsagePolicy

    async def run() -> int:
        db = Database()
        await db.connect()
        try:
            policy = UsagePolicy(PostgresEvaluationStore(db))
            try:
                decision, account = await policy.preview(account_id)
            except AccountNotFoundError as e:
                click.echo(click.style(f"Error: {e}", fg="red"))
                return 1

            limit = "unlimited" if account.is_unlimited else str(account.evaluations_limit)
            click.echo(f"\nAccount {account.account_id}")
            click.echo("-" * 40)
            click.echo(f"  Plan:           {account.plan_tier}")
            click.echo(f"  Billing:        {account.billing_status}")
            if account.grace_period_end is not None:
                click.echo(f"  Grace ends:     {account.grace_period_end.isoformat()}")
            click.echo(f"  Used / limit:   {account.evaluations_used} / {limit}")
            click.echo(f"  Window start:   {account.usage_period_start.date().isoformat()}")
            click.echo(f"  AI tokens used: {account.ai_tokens_used}")

            color = "green" if decision.allowed else "red"
            verdict = "allowed" if decision.allowed else "blocked"
            click.echo(click.style(
                f"  Next request:   {verdict} ({decision.reason})", fg=color,
            ))
            if decision.demoted:
                click.echo("  (grace period expired; next request demotes to free)")
            if decision.reset:
                click.echo("  (new month; next request resets the counter)")
            return 0
        finally:
            await db.close()

    sys.exit(asyncio.run(run()))


@main.command("migrate-scores")
@click.option("--source-max", default=100.0, type=float,
              help="Maximum of the scale the stored scores were written in")
@click.option("--dry-run", is_flag=True, help="Show changes without writing")
@click.option("--batch-size", default=100, type=int, help="Projects per page")
def migrate_scores(source_max: float, dry_run: bool, batch_size: int) -> None:
    """Rescale stored scores to the configured score scale.

    Each project is re-read and rewritten under its row lock. Projects with
    an evaluation in flight are skipped; re-run the command to pick them up.

    Example:
        devscore migrate-scores --source-max 100 --dry-run   # Preview
        devscore migrate-scores --source-max 100             # Apply
    """
    from devscore.errors import EvaluationInProgressError
    from devscore.scoring import ScoringConfig
    from devscore.scoring.migration import needs_rescale, rescale_project
    from devscore.storage.database import Database
    from devscore.storage.repository import PostgresEvaluationStore

    if source_max <= 0:
        click.echo(click.style("Error: --source-max must be positive", fg="red"))
        sys.exit(1)

    scoring = ScoringConfig()

    def rescale(project: Any) -> Any:
        if not needs_rescale(project, scoring.score_max):
            return None
        return rescale_project(
            project,
            source_max=source_max,
            target_min=scoring.score_min,
            target_max=scoring.score_max,
        )

    async def run():
        db = Database()
        await db.connect()
        try:
            store = PostgresEvaluationStore(db)
            found = migrated_count = skipped = 0
            offset = 0
            while True:
                page = await store.list_projects(limit=batch_size, offset=offset)
                if not page:
                    break
                offset += len(page)

                for project in page:
                    preview = rescale(project)
                    if preview is None:
                        continue
                    found += 1
                    label = f"  [{project.project_id}] \"{project.title}\": "

                    if dry_run:
                        click.echo(
                            f"{label}finalScore {project.final_score} -> {preview.final_score}"
                        )
                        continue

                    try:
                        migrated = await store.rewrite_scores(project.project_id, rescale)
                    except EvaluationInProgressError:
                        skipped += 1
                        click.echo(click.style(
                            f"{label}skipped (evaluation in progress)", fg="yellow",
                        ))
                        continue
                    if migrated is None:
                        continue
                    migrated_count += 1
                    click.echo(f"{label}finalScore -> {migrated.final_score}")

            click.echo(f"\nFound {found} project(s) needing migration.")
            if dry_run:
                click.echo("Dry run - no changes written. Run without --dry-run to apply.")
            else:
                click.echo(
                    f"Migrated {migrated_count} project(s) to "
                    f"{scoring.score_min}-{scoring.score_max}."
                )
                if skipped:
                    click.echo(click.style(
                        f"Skipped {skipped} project(s) with an evaluation in progress.",
                        fg="yellow",
                    ))
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
@click.option("--runs", default=2, type=int, help="Evaluations of the demo project")
def demo(runs: int) -> None:
    """Run the pipeline end to end against an in-memory store.

    Uses the configured AI endpoint when EVALUATOR_API_KEY is set, otherwise
    every run produces a fallback record.
    """
    from devscore.errors import DevscoreError
    from devscore.evaluation.schemas import Project
    from devscore.storage.memory import InMemoryEvaluationStore
    from devscore.usage.schemas import UsageAccount

    async def run():
        store = InMemoryEvaluationStore()
        account = await store.create_account(UsageAccount(account_id="demo-user"))
        project = await store.create_project(Project(
            owner_id=account.account_id,
            title="Realtime Chat Service",
            description="WebSocket chat backend with Redis pub/sub fan-out and "
                        "PostgreSQL message history.",
            repo_url="https://github.com/example/realtime-chat",
            tech_stack=["Python", "FastAPI", "Redis", "PostgreSQL"],
        ))
        orchestrator = _build_orchestrator(store)

        for _ in range(runs):
            try:
                outcome = await orchestrator.evaluate(project.project_id)
            except DevscoreError as e:
                click.echo(click.style(f"\nRejected: {e}", fg="red"))
                continue
            _print_outcome(outcome)

        final = await store.get_account(account.account_id)
        click.echo(
            f"\nAccount {final.account_id}: {final.evaluations_used}/"
            f"{final.evaluations_limit} evaluations used, "
            f"{final.ai_tokens_used} AI tokens"
        )

    asyncio.run(run())


if __name__ == "__main__":
    main()
