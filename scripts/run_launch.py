"""CLI entry point to run a SMART standalone patient launch."""

import argparse
import asyncio
import logging
import sys

from smartlaunch.browser import ConsoleBrowserAuthenticator
from smartlaunch.config import settings
from smartlaunch.credentials import CredentialCorrelator
from smartlaunch.formatting import format_conditions, format_org_match, format_patient
from smartlaunch.gateway import TransportGateway
from smartlaunch.launch.orchestrator import Orchestrator


def _pick_issuer(orchestrator: Orchestrator, args: argparse.Namespace) -> str | None:
    if args.iss:
        return args.iss

    if args.pick:
        for pick in settings.quick_picks:
            if pick.name.lower() == args.pick.lower():
                return pick.iss
        names = ", ".join(p.name for p in settings.quick_picks)
        print(f"Unknown quick pick: {args.pick} (available: {names})")
        return None

    results = orchestrator.org_results
    if not results:
        print("No organizations found.")
        return None

    print(f"\nOrganizations ({len(results)}):")
    for i, match in enumerate(results, 1):
        print(format_org_match(i, match))

    choice = input("\nLaunch which organization? ").strip()
    if not choice.isdigit() or not 1 <= int(choice) <= len(results):
        print("No organization selected.")
        return None
    return results[int(choice) - 1].resolved_iss


def _announce_sign_in(url: str) -> None:
    print(f"\nSign in at:\n  {url}\n")


async def run(args: argparse.Namespace) -> int:
    async with TransportGateway() as gateway:
        orchestrator = Orchestrator(
            gateway=gateway,
            correlator=CredentialCorrelator(),
            authenticator=ConsoleBrowserAuthenticator(announce=_announce_sign_in),
        )

        if args.org:
            await orchestrator.search_organizations(args.org)
            if orchestrator.error_message:
                print(f"Search failed: {orchestrator.error_message}")
                return 1

        iss = _pick_issuer(orchestrator, args)
        if not iss:
            return 1

        print("=" * 60)
        print(f"Launching against {iss}")
        print("=" * 60)
        await orchestrator.start_flow(iss)

    if orchestrator.error_message:
        print(f"\nLaunch failed: {orchestrator.error_message}")
        return 1

    if orchestrator.patient is not None:
        print("\n" + "=" * 60)
        print("PATIENT")
        print("=" * 60)
        print(format_patient(orchestrator.patient))

    print("\n" + "=" * 60)
    print("CONDITIONS")
    print("=" * 60)
    if orchestrator.conditions_error:
        print(f"Conditions error: {orchestrator.conditions_error}")
    else:
        print(format_conditions(orchestrator.conditions))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="SMART on FHIR — standalone patient launch",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--iss", type=str, help="FHIR issuer URL to launch against")
    source.add_argument("--org", type=str, help="Search organizations by name")
    source.add_argument("--pick", type=str, help="Quick pick name (e.g. Sandbox, Duke, UCLA)")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every HTTP request and phase change",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
