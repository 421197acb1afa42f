#!/usr/bin/env python3
"""
Command-line entry point
========================
Creates a job in a ``JsonJobStore``, opens a Playwright browser, wires the
Anthropic generator and runs the documentation pipeline once.

All configuration flows through ``PipelineRunConfig``, the single source of
truth for defaults and CLI overrides.

Run with: python -m doccrawler https://app.example.com
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .analysis import CrawlPlanFileAnalyzer
from .auth.credentials import resolve_credentials
from .browser.playwright_session import PlaywrightSession
from .docs import ManifestDocWriter
from .errors import GenerationError
from .generation import AnthropicGenerator
from .models import Job
from .orchestrator import JobPipeline
from .run_config import PipelineRunConfig
from .store.json_store import JsonJobStore

logger = logging.getLogger(__name__)


def _load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()  # tries CWD


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='doccrawler',
        description='Crawl a web app and capture screenshots for its user guide',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m doccrawler https://app.example.com
  python -m doccrawler https://app.example.com --username me@example.com --budget-cents 500
  python -m doccrawler https://app.example.com --prd-file prd.md --max-screens 20 --headed
        """
    )
    parser.add_argument('url', help='Application URL to document')
    parser.add_argument('--budget-cents', type=int, default=None,
                        help='Credits available for this job, in cents (default: 300)')
    parser.add_argument('--max-screens', type=int, default=None,
                        help='Maximum screenshots to capture (default: 50)')
    parser.add_argument('--store-dir', type=str, default=None,
                        help='Directory for job records and screenshots (default: doccrawler_data)')
    parser.add_argument('--docs-dir', type=str, default=None,
                        help='Directory for the documentation manifest (default: doccrawler_docs)')
    parser.add_argument('--prd-file', type=str, help='Product requirements document to summarize')
    parser.add_argument('--crawl-plan', type=str, metavar='PATH',
                        help='JSON crawl plan ({"routes": [...]}) from a code scan')
    parser.add_argument('--headed', action='store_true', help='Show the browser window')
    parser.add_argument('--no-prescan', action='store_true',
                        help='Skip the vision pre-scan of candidate pages')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    # ── Authentication flags ──────────────────────────────────────
    auth_group = parser.add_argument_group(
        'Authentication',
        'Credentials are resolved from flags, then DOCCRAWLER_USERNAME / DOCCRAWLER_PASSWORD.')
    auth_group.add_argument('--login-url', type=str, metavar='URL',
                            help='Login page URL (overrides auto-detection)')
    auth_group.add_argument('--username', type=str, help='Login username')
    auth_group.add_argument('--password', type=str, help='Login password')
    return parser


def print_summary(result: dict, job: Job) -> None:
    print("\n" + "=" * 60)
    print("DOCUMENTATION COMPLETE" if result else "DOCUMENTATION FAILED")
    print("=" * 60)
    if result:
        print(f"  Docs:               {result['docs_url']}")
        print(f"  Screens:            {result['total_screens']}")
        print(f"  Features:           {result['features_documented']}/{result['features_total']}")
        print(f"  Duration:           {result['duration_seconds']}s")
        print(f"  Cost:               ${result['actual_cost_cents'] / 100:.2f}")
        if result['additional_features']:
            print(f"  Not documented:     {len(result['additional_features'])} features (budget)")
    else:
        print(f"  Error:              {job.error}")
    print("=" * 60 + "\n")


async def run_job(url: str, cfg: PipelineRunConfig) -> int:
    store = JsonJobStore(cfg.store_dir)
    prd_text = Path(cfg.prd_file).read_text(encoding='utf-8') if cfg.prd_file else ""
    job = Job(
        app_url=url,
        login_url=cfg.login_url,
        credentials=resolve_credentials(cfg.username, cfg.password),
        budget_cents=cfg.budget_cents,
        max_screens=cfg.max_screens,
        prd_text=prd_text,
    )
    await store.create_job(job)
    logger.info(f"[PIPELINE] Created job {job.id}")

    try:
        generator = AnthropicGenerator()
    except GenerationError as e:
        logger.error(f"[LLM] {e}")
        return 2

    code_analyzer = CrawlPlanFileAnalyzer(cfg.crawl_plan_file) if cfg.crawl_plan_file else None
    async with PlaywrightSession(generator, headless=cfg.headless,
                                 settle_delay_s=cfg.settle_delay_s) as browser:
        pipeline = JobPipeline(
            store, browser, generator,
            doc_writer=ManifestDocWriter(cfg.docs_dir),
            code_analyzer=code_analyzer,
            config=cfg.to_pipeline_config(),
        )
        result = await pipeline.run(job.id)

    final = await store.get_job(job.id)
    print_summary(result, final)
    if result:
        logger.debug(json.dumps(result, indent=2))
    return 0 if result else 1


def main(argv=None) -> int:
    _load_env()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    url = args.url
    if not url.startswith(('http://', 'https://')):
        url = 'https://' + url

    cfg = PipelineRunConfig.from_cli_args(args)
    cfg.log_summary(url)
    try:
        return asyncio.run(run_job(url, cfg))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
