#!/usr/bin/env python3
"""
Main entry point for running the operator locally.

Loads cluster manifests into an in-memory state store and reconciles them
against the in-memory scheduler until interrupted.

Usage:
    python -m logoperator.main --manifest examples/cluster.yaml

    # Console logs, custom settings
    python -m logoperator.main --manifest cluster.yaml --config operator.yaml --log-format console
"""

import argparse
import asyncio
import signal
import sys
from typing import List

import yaml

from logoperator.cluster.model import Cluster
from logoperator.controller.manager import ClusterManager
from logoperator.scheduler.memory import InMemoryCluster
from logoperator.store.memory import InMemoryStateStore
from logoperator.utils.config import Config, OperatorConfig
from logoperator.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='LogOperator - keeps a distributed log cluster converged on its spec'
    )

    parser.add_argument(
        '--manifest',
        type=str,
        action='append',
        required=True,
        help='Cluster manifest YAML (repeatable, multi-document files allowed)'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Operator configuration YAML overriding config/default.yaml'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from configuration)'
    )

    parser.add_argument(
        '--log-format',
        type=str,
        default=None,
        choices=['json', 'console'],
        help='Log output format (default: from configuration)'
    )

    return parser.parse_args(argv)


def load_manifests(paths: List[str]) -> List[Cluster]:
    """
    Load cluster objects from manifest files.

    Args:
        paths: Manifest file paths

    Returns:
        Clusters in file order
    """
    clusters = []
    for path in paths:
        with open(path, "r") as f:
            for document in yaml.safe_load_all(f):
                if not document:
                    continue
                clusters.append(Cluster.from_dict(document))
    return clusters


async def run(clusters: List[Cluster], settings: OperatorConfig) -> None:
    """Run the manager until SIGINT/SIGTERM."""
    store = InMemoryStateStore()
    scheduler = InMemoryCluster(auto_ready=True, auto_expand=True)

    for cluster in clusters:
        await store.create(cluster)

    manager = ClusterManager(store, scheduler, scheduler, settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    await manager.start()

    logger.info("Operator started", clusters=[c.key for c in clusters])

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down operator...")
        await manager.stop()
        logger.info("Operator stopped")


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    config = Config(args.config)
    if args.log_level:
        config.set("logging.level", args.log_level)
    if args.log_format:
        config.set("logging.format", args.log_format)

    configure_logging(
        log_level=config.get("logging.level", "INFO"),
        log_format=config.get("logging.format", "json"),
        log_output=config.get("logging.output", "stdout"),
    )

    settings = OperatorConfig.from_config(config)

    try:
        clusters = load_manifests(args.manifest)
    except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        logger.error("Cannot load manifest", error=str(e))
        sys.exit(2)

    try:
        asyncio.run(run(clusters, settings))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error("Operator error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
