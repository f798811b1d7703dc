#!/usr/bin/env python3
"""
Exploit Refiner
Main entry point for iterative penetration-test refinement

Usage:
    python main.py --contract contracts/Vault.sol --vulnerability "Reentrancy in withdraw"
    python main.py --contract contracts/Vault.sol --test-file test/penetrationTest-Vault-Reentrancy.ts
    python main.py --contract contracts/Vault.sol --analysis analysis.json --stagger 0.5
"""

import asyncio
import argparse
import logging
import json
import sys
from pathlib import Path
from typing import List

from exploit_refiner import (
    Config,
    ConcurrencyPolicy,
    Outcome,
    RefinementAgent,
    SessionResult,
    Target,
    targets_from_analysis,
)


def setup_logging(level: str = "INFO", log_file: str = "exploit_refiner.log"):
    """Configure logging for the application"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def load_targets(path: str, contract_source: str) -> List[Target]:
    """
    Targets from a JSON file: either an analyzer result
    ({"vulnerabilities": {"exploits": [...]}}) or a plain list of
    {"vulnerability", "description", "severity"} objects.
    """
    with open(path, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict):
        return targets_from_analysis(data, contract_source)

    targets = []
    for index, item in enumerate(data):
        vulnerability = item.get("vulnerability") or item.get("name") or f"Vulnerability {index + 1}"
        targets.append(Target.from_request(
            contract_source,
            vulnerability,
            description=item.get("description", ""),
            severity=item.get("severity", "Medium"),
            target_id=item.get("id")
        ))
    return targets


def print_summary(results: List[SessionResult]):
    """Print refinement summary"""

    print("\n" + "=" * 60)
    print("EXPLOIT REFINEMENT SUMMARY")
    print("=" * 60)
    print(f"Targets: {len(results)}")
    for outcome in Outcome:
        print(f"  {outcome.value}: {sum(1 for r in results if r.outcome == outcome)}")

    for result in results:
        print(f"\n[{result.outcome.value.upper()}] {result.vulnerability} ({result.target_id})")
        print(f"  Confidence: {result.confidence}")
        print(f"  Cycles: {result.cycles}, attempts: {result.attempts}, time: {result.execution_time:.1f}s")
        print(f"  {result.explanation}")
        if result.security_implication:
            print(f"  Implication: {result.security_implication}")
        if result.final_artifact:
            print(f"  Final test: {result.final_artifact}")

    print("=" * 60)


def save_results(results: List[SessionResult], output_file: str):
    """Save results to JSON file"""
    with open(output_file, 'w') as f:
        json.dump([result.to_dict() for result in results], f, indent=2)

    print(f"Results saved to {output_file}")


async def main():
    """Main entry point"""

    parser = argparse.ArgumentParser(
        description="Iteratively refine smart contract penetration tests"
    )

    parser.add_argument("--contract", type=str, required=True, help="Solidity source of the target contract")

    # Single target
    parser.add_argument("--vulnerability", type=str, help="Vulnerability to test")
    parser.add_argument("--description", type=str, default="", help="Vulnerability description")
    parser.add_argument("--severity", type=str, default="Medium", choices=["Low", "Medium", "High"])
    parser.add_argument("--test-file", type=str, help="Existing penetration test to refine")

    # Parallel run
    parser.add_argument("--targets", "--analysis", dest="targets", type=str,
                        help="JSON file with an analysis result or a target list")
    parser.add_argument("--stagger", type=float, default=None,
                        help="Seconds between session starts (default from config)")

    # Configuration
    parser.add_argument("--model", type=str, default=None,
                        help="Generation model (default from config)")
    parser.add_argument("--max-cycles", type=int, default=None,
                        help="Maximum cycles per target (default from config)")
    parser.add_argument("--workspace", type=str, default=None,
                        help="Hardhat workspace the tests run in (default from config)")
    parser.add_argument("--output", type=str, default="refinement_results.json",
                        help="Output file for results")

    # Logging
    parser.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level (default from config)")

    args = parser.parse_args()

    try:
        config = Config.from_env()

        if args.model is not None:
            config.default_model = args.model
        if args.max_cycles is not None:
            config.max_cycles = args.max_cycles
        if args.workspace is not None:
            config.workspace_path = args.workspace
        if args.stagger is not None:
            config.stagger_interval = args.stagger

        log_level = args.log_level if args.log_level is not None else config.log_level

        config.validate()

    except Exception as e:
        setup_logging("ERROR")
        logger = logging.getLogger(__name__)
        logger.error(f"Configuration error: {str(e)}")
        print("\nRequired environment variables:")
        print("  VENICE_API_KEY")
        print("  HARDHAT_WORKSPACE (defaults to the current directory)")
        print("  HARDHAT_RPC_URL (defaults to http://localhost:8545)")
        sys.exit(1)

    setup_logging(log_level, config.log_file)
    logger = logging.getLogger(__name__)

    contract_path = Path(args.contract)
    if not contract_path.exists():
        logger.error(f"Contract source not found: {contract_path}")
        sys.exit(1)
    contract_source = contract_path.read_text()

    agent = RefinementAgent(config)

    try:
        if args.targets:
            targets = load_targets(args.targets, contract_source)
            if not targets:
                logger.error(f"No targets found in {args.targets}")
                sys.exit(1)

            logger.info(f"Starting parallel refinement of {len(targets)} targets")
            run = await agent.start_parallel_refinement(
                targets,
                policy=ConcurrencyPolicy(stagger_interval=config.stagger_interval)
            )
            results = run.results

        elif args.test_file:
            target = Target.from_test_file(args.test_file, contract_source)
            logger.info(f"Refining existing test for: {target.vulnerability}")
            results = [await agent.start_refinement(target, seed_path=args.test_file)]

        elif args.vulnerability:
            target = Target.from_request(
                contract_source,
                args.vulnerability,
                description=args.description,
                severity=args.severity
            )
            results = [await agent.start_refinement(target)]

        else:
            logger.error("Please specify --vulnerability, --test-file or --targets")
            parser.print_help()
            sys.exit(1)

        print_summary(results)
        save_results(results, args.output)

    except KeyboardInterrupt:
        logger.info("Refinement interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Refinement failed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
