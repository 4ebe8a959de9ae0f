"""
Main CLI entry point for GPU Job Orchestrator

Provides command-line interface for job submission and control, GPU
catalog queries and running the orchestrator as a long-lived process.
"""

import asyncio
import json
import sys
from typing import Optional, Dict, Any

import click

from .. import create_orchestrator
from ..core.config import OrchestratorConfig
from ..core.exceptions import JobOrchestratorError, JobNotFoundError
from ..core.orchestrator import LifecycleOrchestrator
from ..models.events import LifecycleEvent
from ..models.job import Job, JobState, ResourceRequest, TERMINAL_STATES
from ..utils.logger import setup_logger, PACKAGE_LOGGER


@click.group()
@click.option('--config', '-c', type=click.Path(exists=True), help='Configuration file path (YAML or JSON)')
@click.option('--database-url', '-d', help='Database connection URL; in-memory store when omitted')
@click.option('--log-level', '-l', default=None, help='Log level')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, config, database_url, log_level, verbose):
    """GPU Job Orchestrator CLI"""

    # Ensure context object exists
    ctx.ensure_object(dict)

    try:
        settings = OrchestratorConfig.from_file(config) if config else OrchestratorConfig()
        settings = OrchestratorConfig.from_env(base=settings)
    except JobOrchestratorError as e:
        click.echo(f"Error loading configuration: {e.message}", err=True)
        sys.exit(1)

    if database_url:
        settings.database_url = database_url
    if log_level:
        settings.log_level = log_level

    # Set up logging
    setup_logger(PACKAGE_LOGGER, level=settings.log_level, structured=settings.structured_logs and not verbose)

    ctx.obj['settings'] = settings
    ctx.obj['verbose'] = verbose


@cli.group()
@click.pass_context
def job(ctx):
    """Job management commands"""
    pass


@cli.group()
@click.pass_context
def gpu(ctx):
    """GPU catalog commands"""
    pass


@cli.group()
@click.pass_context
def server(ctx):
    """Server management commands"""
    pass


# Job Commands
@job.command('submit')
@click.argument('resource_type')
@click.option('--requirements-json', help='Resource requirements as JSON string')
@click.option('--requirements-file', type=click.Path(exists=True), help='Resource requirements JSON file')
@click.option('--model-type', help='Model type, for display')
@click.option('--user', 'user_id', default='default-user', help='Submitting user')
@click.option('--follow', '-f', is_flag=True, help='Stream lifecycle events until the job finishes')
@click.pass_context
def submit_job(ctx, resource_type, requirements_json, requirements_file, model_type, user_id, follow):
    """Submit a new job for RESOURCE_TYPE (e.g. A100)"""

    async def _submit():
        orchestrator = None
        try:
            requirements = _parse_requirements(requirements_json, requirements_file)
            orchestrator = await _initialize_orchestrator(ctx)

            job = Job(
                resource=ResourceRequest(resource_type, requirements),
                user_id=user_id,
                model_type=model_type
            )

            # Subscribe before submitting so no event is missed
            subscription = orchestrator.subscribe(job.job_id) if follow else None

            instance_id = await orchestrator.submit(job)

            click.echo("Job submitted successfully!")
            click.echo(f"Job ID: {job.job_id}")
            click.echo(f"Instance ID: {instance_id}")
            click.echo(f"Resource: {resource_type}")

            if ctx.obj['verbose'] and requirements:
                click.echo(f"Requirements: {json.dumps(requirements, indent=2)}")

            if subscription is not None:
                async with subscription:
                    async for event in subscription:
                        click.echo(_format_event(event))
                        if event.status in TERMINAL_STATES:
                            break

        except (JobOrchestratorError, ValueError) as e:
            click.echo(f"Error submitting job: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_submit())


@job.command('stop')
@click.argument('job_id')
@click.pass_context
def stop_job(ctx, job_id):
    """Stop a provisioning or running job"""

    async def _stop():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            if await orchestrator.request_stop(job_id):
                click.echo(f"Job {job_id} stopped")
            else:
                click.echo(f"Job {job_id} was not stopped (unknown, pending or already finished)")

        except JobOrchestratorError as e:
            click.echo(f"Error stopping job: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_stop())


@job.command('status')
@click.argument('job_id')
@click.pass_context
def job_status(ctx, job_id):
    """Get job status and details"""

    async def _status():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            job_info = await orchestrator.get_job_status(job_id)
            _display_job_details(job_info, ctx.obj['verbose'])

        except JobNotFoundError:
            click.echo(f"Job {job_id} not found", err=True)
            sys.exit(1)
        except JobOrchestratorError as e:
            click.echo(f"Error getting job status: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_status())


@job.command('list')
@click.option('--user', 'user_id', help='Show only jobs of this user')
@click.option('--state', type=click.Choice([s.value for s in JobState]), help='Show only jobs in this state')
@click.option('--limit', type=int, default=10, help='Limit number of jobs to show')
@click.pass_context
def list_jobs(ctx, user_id, state, limit):
    """List jobs, newest first"""

    async def _list():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            jobs = await orchestrator.list_jobs(user_id=user_id, state=state, limit=limit)
            _display_jobs_table(jobs, ctx.obj['verbose'])

        except JobOrchestratorError as e:
            click.echo(f"Error listing jobs: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_list())


# GPU Commands
@gpu.command('available')
@click.pass_context
def available_gpus(ctx):
    """Show GPU types that can be allocated now"""

    async def _available():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            gpus = await orchestrator.list_available_gpus()
            if not gpus:
                click.echo("No GPUs available")
                return

            click.echo(f"{'Type':<12} {'Available':<10}")
            click.echo("-" * 22)
            for entry in gpus:
                click.echo(f"{entry.resource_type:<12} {entry.available:<10}")

        except JobOrchestratorError as e:
            click.echo(f"Error listing GPUs: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_available())


@gpu.command('pricing')
@click.pass_context
def gpu_pricing(ctx):
    """Show hourly pricing per GPU type"""

    async def _pricing():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            prices = await orchestrator.get_pricing()
            if not prices:
                click.echo("No pricing available")
                return

            click.echo(f"{'Type':<12} {'$/hour':<8} {'Memory':<8} {'Compute':<14}")
            click.echo("-" * 45)
            for entry in prices:
                click.echo(f"{entry.resource_type:<12} {entry.price_per_hour:<8.2f} "
                           f"{entry.memory:<8} {entry.compute:<14}")

        except JobOrchestratorError as e:
            click.echo(f"Error getting pricing: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_pricing())


@gpu.command('metrics')
@click.argument('job_id')
@click.pass_context
def gpu_metrics(ctx, job_id):
    """Show utilisation of a job's instance"""

    async def _metrics():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx)

            metrics = await orchestrator.get_gpu_metrics(job_id)
            click.echo(json.dumps(metrics.to_dict(), indent=2))

        except JobOrchestratorError as e:
            click.echo(f"Error getting metrics: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    asyncio.run(_metrics())


# Server Commands
@server.command('start')
@click.option('--duration', type=float, default=None, help='Stop after this many seconds')
@click.pass_context
def start_server(ctx, duration):
    """Run the orchestrator, resume in-flight jobs and stream lifecycle events"""

    async def _start():
        orchestrator = None
        try:
            orchestrator = await _initialize_orchestrator(ctx, resume=True)

            click.echo("Orchestrator started. Press Ctrl+C to stop.")

            loop = asyncio.get_running_loop()
            deadline = loop.time() + duration if duration is not None else None

            async with orchestrator.subscribe() as events:
                while True:
                    timeout = None
                    if deadline is not None:
                        timeout = deadline - loop.time()
                        if timeout <= 0:
                            break
                    event = await events.get(timeout=timeout)
                    if event is not None:
                        click.echo(_format_event(event))

            click.echo("Shutting down orchestrator...")

        except JobOrchestratorError as e:
            click.echo(f"Error starting orchestrator: {str(e)}", err=True)
            sys.exit(1)
        finally:
            if orchestrator:
                await orchestrator.stop()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        click.echo("Interrupted")


# Helper Functions
async def _initialize_orchestrator(ctx, resume: bool = False) -> LifecycleOrchestrator:
    """Build and start an orchestrator from the CLI settings"""
    settings: OrchestratorConfig = ctx.obj['settings']

    orchestrator = create_orchestrator(settings)
    report = await orchestrator.start(resume=resume)

    if report is not None and ctx.obj['verbose']:
        click.echo(f"Recovery: {json.dumps(report.to_dict())}")

    return orchestrator


def _parse_requirements(requirements_json: Optional[str], requirements_file: Optional[str]) -> Dict[str, Any]:
    """Read the requirements map from a file or a JSON string"""
    if requirements_file:
        with open(requirements_file, 'r') as f:
            requirements = json.load(f)
    elif requirements_json:
        requirements = json.loads(requirements_json)
    else:
        requirements = {}

    if not isinstance(requirements, dict):
        raise ValueError("requirements must be a JSON object")
    return requirements


def _format_event(event: LifecycleEvent) -> str:
    return f"[{event.timestamp.isoformat(timespec='seconds')}] {json.dumps(event.to_dict())}"


def _display_job_details(job_info: Dict[str, Any], verbose: bool):
    """Display detailed job information"""
    click.echo(f"Job ID: {job_info['job_id']}")
    click.echo(f"State: {job_info['state']}")
    click.echo(f"Resource: {job_info['resource_type']}")
    click.echo(f"User: {job_info['user_id']}")

    if job_info.get('model_type'):
        click.echo(f"Model: {job_info['model_type']}")

    click.echo(f"Instance: {job_info.get('instance_id') or 'N/A'}")
    click.echo(f"Created: {job_info['created_at']}")
    click.echo(f"Updated: {job_info['updated_at']}")

    instance = job_info.get('instance_status')
    if instance:
        suffix = f" ({instance['source']})" if instance['source'] != 'provider' else ""
        click.echo(f"Instance Status: {instance['status']}{suffix}")
    elif job_info.get('instance_status_error'):
        click.echo(f"Instance Status: unavailable ({job_info['instance_status_error']})")

    if verbose:
        if job_info.get('requirements'):
            click.echo("Requirements:")
            click.echo(json.dumps(job_info['requirements'], indent=2))
        click.echo("Audit Log:")
        for entry in job_info.get('audit_log', []):
            click.echo(f"  {entry}")


def _display_jobs_table(jobs: list, verbose: bool):
    """Display jobs in table format"""
    if not jobs:
        click.echo("No jobs found")
        return

    # Header
    if verbose:
        click.echo(f"{'Job ID':<34} {'Resource':<10} {'State':<13} {'Instance':<16} {'User':<14} {'Created':<20}")
        click.echo("-" * 112)
    else:
        click.echo(f"{'Job ID':<34} {'Resource':<10} {'State':<13}")
        click.echo("-" * 59)

    # Rows
    for job in jobs:
        if verbose:
            created = job['created_at'][:19] if job.get('created_at') else 'Unknown'
            instance = job.get('instance_id') or 'N/A'
            click.echo(f"{job['job_id']:<34} {job['resource_type']:<10} {job['state']:<13} "
                       f"{instance:<16} {job['user_id']:<14} {created:<20}")
        else:
            click.echo(f"{job['job_id']:<34} {job['resource_type']:<10} {job['state']:<13}")


def main():
    """Main CLI entry point"""
    cli()


if __name__ == '__main__':
    main()
