#!/usr/bin/env python3
"""
A1 Triage - Smart contract exploit triage and valuation
Main entry point for defensive vulnerability analysis

Usage:
    python main.py --chain 1 --address 0x123... --block 18000000
    python main.py --contract-list contracts.json --simulate --seed 7
"""

import asyncio
import argparse
import logging
import json
import random
import sys
from typing import List, Dict, Any

from a1_triage import Config, ValidationFailure, build_orchestrator
from a1_triage.models import PipelineOutcome
from a1_triage.pipeline import PipelineOrchestrator


def setup_logging(level: str = "INFO", log_file: str = "a1_triage.log"):
    """Configure logging for the application"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


async def analyze_single_contract(
    orchestrator: PipelineOrchestrator,
    chain_id: int,
    contract_address: str,
    block_number: int = None
) -> PipelineOutcome:
    """Analyze a single smart contract"""

    logger = logging.getLogger(__name__)

    logger.info(f"Starting analysis of {contract_address} on chain {chain_id}")

    if block_number:
        logger.info(f"Using historical block: {block_number}")

    outcome = await orchestrator.analyze(contract_address, chain_id, block_number)

    if outcome.exploit_found:
        revenue = outcome.revenue
        logger.info(f"🚨 VULNERABILITY FOUND!")
        logger.info(f"   Type: {outcome.strategy.kind.value} ({outcome.strategy.severity.value})")
        logger.info(f"   Value at risk: ${revenue.total_value_usd:,.2f} (net ${revenue.net_profit_usd:,.2f})")
        logger.info(f"   Risk level: {revenue.summary.risk_level.value}")
        logger.info(f"   Simulated: {outcome.execution.simulated}")
    elif outcome.error:
        logger.error(f"❌ Analysis failed: {outcome.error}")
    else:
        logger.info(f"✅ Analysis complete - No exploitable vulnerability confirmed")

    return outcome


async def analyze_contract_list(
    orchestrator: PipelineOrchestrator,
    contract_list: List[Dict[str, Any]]
) -> List[PipelineOutcome]:
    """Analyze multiple contracts as concurrent sessions"""

    logger = logging.getLogger(__name__)
    tasks = []

    for i, contract_info in enumerate(contract_list):
        try:
            session = await orchestrator.create_session(
                contract_address=contract_info.get("address"),
                chain_id=contract_info.get("chain_id"),
                block_number=contract_info.get("block_number")
            )
        except ValidationFailure as e:
            logger.error(f"Skipping contract {i+1}/{len(contract_list)}: {e}")
            continue
        tasks.append(orchestrator.submit(session.id))

    logger.info(f"Running {len(tasks)} sessions")
    return list(await asyncio.gather(*tasks))


def outcome_to_dict(outcome: PipelineOutcome) -> Dict[str, Any]:
    session = outcome.session
    return {
        "session_id": session.id,
        "contract_address": session.contract_address,
        "chain_id": session.chain_id,
        "block_number": session.block_number,
        "status": session.status.value,
        "exploit_found": outcome.exploit_found,
        "findings": [
            {"kind": f.kind.value, "severity": f.severity.value, "confidence": f.confidence}
            for f in outcome.findings
        ],
        "warnings": outcome.warnings,
        "strategy": outcome.strategy.kind.value if outcome.strategy else None,
        "execution": {
            "success": outcome.execution.success,
            "simulated": outcome.execution.simulated,
            "gas_used": outcome.execution.gas_used,
            "error_message": outcome.execution.error_message,
        } if outcome.execution else None,
        "revenue": outcome.revenue.to_dict() if outcome.revenue else None,
        "proof_of_concept": outcome.discovery.proof_of_concept if outcome.discovery else None,
        "error": outcome.error,
    }


def print_summary(results: List[PipelineOutcome]):
    """Print analysis summary"""

    total_contracts = len(results)
    completed = sum(1 for r in results if r.error is None)
    vulnerabilities_found = sum(1 for r in results if r.exploit_found)
    total_value = sum(r.revenue.total_value_usd for r in results if r.revenue)

    print("\n" + "="*60)
    print("A1 TRIAGE SUMMARY")
    print("="*60)
    print(f"Total contracts analyzed: {total_contracts}")
    print(f"Completed sessions: {completed}")
    print(f"Vulnerabilities found: {vulnerabilities_found}")
    if total_contracts:
        print(f"Hit rate: {(vulnerabilities_found/total_contracts)*100:.1f}%")
    print(f"Total value at risk: ${total_value:,.2f}")

    if vulnerabilities_found > 0:
        print("\nVulnerabilities by type:")
        vuln_types = {}
        for result in results:
            if result.exploit_found:
                vuln_type = result.strategy.kind.value
                vuln_types[vuln_type] = vuln_types.get(vuln_type, 0) + 1

        for vuln_type, count in vuln_types.items():
            print(f"  {vuln_type}: {count}")

    print("="*60)


def save_results(results: List[PipelineOutcome], output_file: str):
    """Save results to JSON file"""

    results_data = [outcome_to_dict(result) for result in results]

    with open(output_file, 'w') as f:
        json.dump(results_data, f, indent=2, default=str)

    print(f"Results saved to {output_file}")


async def main():
    """Main entry point"""

    parser = argparse.ArgumentParser(
        description="A1 Smart Contract Exploit Triage Tool"
    )

    # Single contract analysis
    parser.add_argument("--chain", type=int, help="Chain ID (1=Ethereum, 56=BSC, 137=Polygon)")
    parser.add_argument("--address", type=str, help="Contract address to analyze")
    parser.add_argument("--block", type=int, help="Historical block number (optional)")

    # Batch analysis
    parser.add_argument("--contract-list", type=str, help="JSON file with contract list")

    # Execution
    parser.add_argument("--simulate", action="store_true",
                       help="Use the statistical simulator instead of a Foundry fork")
    parser.add_argument("--seed", type=int, default=None,
                       help="Simulator seed (default from config)")
    parser.add_argument("--output", type=str, default="a1_triage_results.json",
                       help="Output file for results")

    # Logging
    parser.add_argument("--log-level", type=str, default=None,
                       choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                       help="Log level (default from config)")

    args = parser.parse_args()

    # Load configuration first to get defaults
    try:
        config = Config.from_env()

        if args.seed is not None:
            config.simulator_seed = args.seed

        log_level = args.log_level if args.log_level is not None else config.log_level

        config.validate()

    except Exception as e:
        setup_logging("ERROR")
        logger = logging.getLogger(__name__)
        logger.error(f"Configuration error: {str(e)}")
        print("\nRelevant environment variables:")
        print("  ETHEREUM_RPC_URL")
        print("  ETHERSCAN_API_KEY")
        print("  BSC_RPC_URL (for BSC analysis)")
        print("  POLYGON_RPC_URL (for Polygon analysis)")
        sys.exit(1)

    setup_logging(log_level, config.log_file)
    logger = logging.getLogger(__name__)

    rng = random.Random(config.simulator_seed) if args.simulate else None
    orchestrator = await build_orchestrator(config, simulate=args.simulate, rng=rng)

    try:
        # Single contract analysis
        if args.chain and args.address:
            logger.info("Starting single contract analysis")

            result = await analyze_single_contract(
                orchestrator=orchestrator,
                chain_id=args.chain,
                contract_address=args.address,
                block_number=args.block
            )

            results = [result]

        # Batch analysis
        elif args.contract_list:
            logger.info("Starting batch contract analysis")

            with open(args.contract_list, 'r') as f:
                contract_list = json.load(f)

            results = await analyze_contract_list(orchestrator, contract_list)

        else:
            logger.error("Please specify either --chain and --address, or --contract-list")
            parser.print_help()
            sys.exit(1)

        print_summary(results)
        save_results(results, args.output)

    except ValidationFailure as e:
        logger.error(f"Invalid target: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Analysis interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Analysis failed: {str(e)}")
        sys.exit(1)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
