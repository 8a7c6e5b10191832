"""Command-line interface for the masternode operator tooling."""

from __future__ import annotations

import argparse
import functools
import getpass
import json
import logging
import os
import signal
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

import yaml

from .amounts import format_coins, parse_coins, units_to_coins
from .coin_selector import (
    InteractiveSelection,
    PresuppliedSelection,
    SelectionError,
    filter_eligible,
    format_output_table,
    select_interactively,
    sort_descending_by_amount,
)
from .config import ConfigurationError, OperatorConfig
from .consolidation import ConsolidationError, consolidate, cross_chain_transfer
from .credentials import (
    CREDENTIAL_FIELDS,
    PASSPHRASE_ENV,
    CredentialError,
    load_config_with_credentials,
    save_credentials,
)
from .monitor import MonitoringLoop
from .node_client import NodeAPIClient, NodeTransportError, format_node_hint
from .notify import notifier_from_config
from .peers import reconnect_peers
from .schemas import BatchResult, SchemaError
from .staking import ensure_staking
from .tx_builder import ChangePolicy, TransactionBuildError, TransactionBuilder

logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")
CHAINS = ("mainchain", "sidechain")


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _add_chain_argument(parser: argparse.ArgumentParser, default: str) -> None:
    parser.add_argument(
        "--chain",
        choices=CHAINS,
        default=default,
        help=f"Which node to talk to (default: {default})",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cirrus masternode operator tools")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: ~/.cirrus-ops.yaml)")
    parser.add_argument("--mainchain-url", default=None, help="Override the mainchain node API URL")
    parser.add_argument("--sidechain-url", default=None, help="Override the sidechain node API URL")
    parser.add_argument("--wallet", default=None, help="Override the wallet name")
    parser.add_argument("--account", default=None, help="Override the wallet account")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("monitor", help="Poll node health and send scheduled reports")

    consolidate_parser = subparsers.add_parser(
        "consolidate", help="Sweep eligible outputs into one address in fixed-size batches"
    )
    _add_chain_argument(consolidate_parser, "sidechain")
    consolidate_parser.add_argument("--destination", default=None, help="Destination address")
    consolidate_parser.add_argument("--fee", default=None, help="Fee per transaction in whole coins")
    consolidate_parser.add_argument("--batch-size", type=int, default=None, help="Outputs per transaction")
    consolidate_parser.add_argument(
        "--min-confirmations",
        type=int,
        default=None,
        help="Only spend outputs with more confirmations than this",
    )
    consolidate_parser.add_argument(
        "--change-policy",
        choices=[policy.value for policy in ChangePolicy],
        default=None,
        help="Where change goes: the first selected coin's address or the destination",
    )
    consolidate_parser.add_argument("--dry-run", action="store_true", help="Print batches without sending")

    cross_parser = subparsers.add_parser(
        "cross-chain", help="Transfer sidechain outputs to the mainchain address via the federation"
    )
    cross_parser.add_argument("--mainchain-address", default=None, help="Mainchain address to credit")
    cross_parser.add_argument("--dry-run", action="store_true", help="Print batches without sending")

    send_parser = subparsers.add_parser("send", help="Spend hand-picked outputs to an address")
    _add_chain_argument(send_parser, "mainchain")
    send_parser.add_argument("--to-address", required=True, help="Destination address")
    send_parser.add_argument("--fee", default=None, help="Fee in whole coins")
    send_parser.add_argument(
        "--indices",
        default=None,
        help="Comma separated output indices; prompts interactively when omitted",
    )
    send_parser.add_argument("--amount", default=None, help="Amount for the destination (needs --change-address)")
    send_parser.add_argument("--change-address", default=None, help="Change address (needs --amount)")
    send_parser.add_argument(
        "--change-policy",
        choices=[policy.value for policy in ChangePolicy],
        default=None,
        help="Change address default when neither --amount nor --change-address is given",
    )
    send_parser.add_argument("--op-return", default=None, help="Optional OP_RETURN payload")
    send_parser.add_argument("--min-confirmations", type=int, default=0)
    send_parser.add_argument("--dry-run", action="store_true", help="Print the request without sending")

    list_parser = subparsers.add_parser("list-utxos", help="List spendable outputs, largest first")
    _add_chain_argument(list_parser, "sidechain")
    list_parser.add_argument("--min-confirmations", type=int, default=0)
    list_parser.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON")

    balance_parser = subparsers.add_parser("balance", help="Show wallet balances")
    _add_chain_argument(balance_parser, "sidechain")

    wallets_parser = subparsers.add_parser("list-wallets", help="List wallets and their accounts")
    _add_chain_argument(wallets_parser, "sidechain")

    staking_parser = subparsers.add_parser("start-staking", help="Start staking if it is not running")
    _add_chain_argument(staking_parser, "mainchain")

    info_parser = subparsers.add_parser("staking-info", help="Show staking status")
    _add_chain_argument(info_parser, "mainchain")

    peers_parser = subparsers.add_parser(
        "reconnect-peers", help="Re-add configured peers the node is not connected to"
    )
    _add_chain_argument(peers_parser, "sidechain")
    peers_parser.add_argument("--peer", action="append", default=None, help="Endpoint host:port (repeatable)")

    encrypt_parser = subparsers.add_parser(
        "encrypt-credentials", help="Encrypt a YAML/JSON secrets file for use as credentials_file"
    )
    encrypt_parser.add_argument("source", help="Plaintext YAML or JSON mapping of credential fields")
    encrypt_parser.add_argument("output", help="Where to write the encrypted credentials")

    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "mainchain_url": args.mainchain_url,
        "sidechain_url": args.sidechain_url,
        "wallet_name": args.wallet,
        "wallet_account": args.account,
    }
    return {key: value for key, value in overrides.items() if value is not None}


def _client(config: OperatorConfig, chain: str) -> NodeAPIClient:
    return NodeAPIClient(config.mainchain if chain == "mainchain" else config.sidechain)


def _require_wallet(config: OperatorConfig, *, password: bool = False) -> None:
    if not config.wallet.name:
        raise CLIError("wallet.name is not configured (or pass --wallet)")
    if password and not config.wallet.password:
        raise CLIError("wallet.password is not configured; set it in the credentials file")


def _builder(config: OperatorConfig, chain: str) -> TransactionBuilder:
    _require_wallet(config, password=True)
    return TransactionBuilder(
        _client(config, chain),
        wallet_name=config.wallet.name,
        password=config.wallet.password,
        account_name=config.wallet.account,
    )


def _parse_fee(raw: str | None, default: Decimal) -> Decimal:
    if raw is None:
        return default
    try:
        fee = parse_coins(raw)
    except ValueError as exc:
        raise CLIError(f"invalid --fee: {raw}") from exc
    if fee < 0:
        raise CLIError("--fee must not be negative")
    return fee


def _batch_size(raw: int | None, default: int) -> int:
    if raw is None:
        return default
    if raw < 1:
        raise CLIError("--batch-size must be at least 1")
    return raw


def _batch_summary(results: Sequence[BatchResult]) -> dict[str, Any]:
    return {
        "batches": [
            {
                "inputs": len(result.request.outpoints),
                "amount": format_coins(result.request.recipients_total),
                "fee": format_coins(result.request.fee_amount),
                "txid": result.broadcast.transaction_id if result.broadcast else None,
            }
            for result in results
        ]
    }


def cmd_monitor(config: OperatorConfig) -> None:
    mainchain = _client(config, "mainchain")
    sidechain = _client(config, "sidechain")
    transfer = None
    if config.cross_chain.mainchain_address and config.wallet.name and config.wallet.password:
        transfer = functools.partial(
            cross_chain_transfer,
            _builder(config, "sidechain"),
            config.cross_chain.mainchain_address,
            federation_address=config.cross_chain.federation_address,
            fee=config.cross_chain.fee,
            min_confirmations=config.cross_chain.min_confirmations,
            batch_size=config.cross_chain.batch_size,
        )
    else:
        logger.info("Cross-chain transfer not configured; reports will only include balances")
    loop = MonitoringLoop(
        mainchain,
        sidechain,
        notifier_from_config(config.notify),
        config.monitor,
        wallet_name=config.wallet.name,
        transfer=transfer,
    )
    signal.signal(signal.SIGTERM, lambda *_: loop.stop())
    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        loop.stop()


def cmd_consolidate(args: argparse.Namespace, config: OperatorConfig) -> None:
    settings = config.consolidation
    destination = args.destination or settings.destination_address
    if not destination:
        raise CLIError("No destination: pass --destination or set consolidation.destination_address")
    try:
        change_policy = ChangePolicy.parse(args.change_policy or settings.change_policy)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc
    results = consolidate(
        _builder(config, args.chain),
        destination,
        fee=_parse_fee(args.fee, settings.fee),
        min_confirmations=(
            args.min_confirmations if args.min_confirmations is not None else settings.min_confirmations
        ),
        batch_size=_batch_size(args.batch_size, settings.batch_size),
        change_policy=change_policy,
        dry_run=args.dry_run,
    )
    print(json.dumps(_batch_summary(results), indent=2))


def cmd_cross_chain(args: argparse.Namespace, config: OperatorConfig) -> None:
    settings = config.cross_chain
    results = cross_chain_transfer(
        _builder(config, "sidechain"),
        args.mainchain_address or settings.mainchain_address,
        federation_address=settings.federation_address,
        fee=settings.fee,
        min_confirmations=settings.min_confirmations,
        batch_size=settings.batch_size,
        dry_run=args.dry_run,
    )
    print(json.dumps(_batch_summary(results), indent=2))


def cmd_send(args: argparse.Namespace, config: OperatorConfig) -> None:
    builder = _builder(config, args.chain)
    outputs = sort_descending_by_amount(
        filter_eligible(
            builder.client.spendable_outputs(builder.wallet_name, builder.account_name),
            args.min_confirmations,
        )
    )
    strategy = PresuppliedSelection(args.indices) if args.indices else InteractiveSelection()
    coins = select_interactively(outputs, strategy)
    amount = None
    if args.amount is not None:
        try:
            amount = parse_coins(args.amount)
        except ValueError as exc:
            raise CLIError(f"invalid --amount: {args.amount}") from exc
    try:
        change_policy = ChangePolicy.parse(args.change_policy or config.consolidation.change_policy)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc
    request = builder.prepare_request(
        coins,
        args.to_address,
        _parse_fee(args.fee, config.consolidation.fee),
        change_address=args.change_address,
        amount_for_destination=amount,
        change_policy=change_policy,
        op_return_data=args.op_return,
    )
    if args.dry_run:
        body = builder.request_body(request)
        body["password"] = "***"
        print(json.dumps(body, indent=2))
        return
    built, result = builder.send(request)
    print(
        json.dumps(
            {"txid": result.transaction_id, "fee": built.fee},
            separators=COMPACT_JSON_SEPARATORS,
        )
    )


def cmd_list_utxos(args: argparse.Namespace, config: OperatorConfig) -> None:
    _require_wallet(config)
    client = _client(config, args.chain)
    outputs = sort_descending_by_amount(
        filter_eligible(
            client.spendable_outputs(config.wallet.name, config.wallet.account),
            args.min_confirmations,
        )
    )
    if args.as_json:
        print(
            json.dumps(
                [
                    {
                        "id": output.id,
                        "index": output.index,
                        "address": output.address,
                        "amount": format_coins(output.coins),
                        "creationTime": output.creation_time,
                        "confirmations": output.confirmations,
                    }
                    for output in outputs
                ],
                indent=2,
            )
        )
        return
    if not outputs:
        print("No matching outputs found.")
        return
    total = units_to_coins(sum(output.amount for output in outputs))
    print(f"Found {len(outputs)} outputs totalling {format_coins(total)} (min_conf>{args.min_confirmations})")
    for line in format_output_table(outputs):
        print(line)


def cmd_balance(args: argparse.Namespace, config: OperatorConfig) -> None:
    _require_wallet(config)
    for balance in _client(config, args.chain).wallet_balance(config.wallet.name):
        print(
            f"{balance.account_name}: confirmed {format_coins(balance.confirmed_coins)}, "
            f"unconfirmed {format_coins(units_to_coins(balance.amount_unconfirmed))}, "
            f"spendable {format_coins(units_to_coins(balance.spendable_amount))}"
        )


def cmd_list_wallets(args: argparse.Namespace, config: OperatorConfig) -> None:
    client = _client(config, args.chain)
    for name in client.list_wallets():
        print(f"{name}: {', '.join(client.list_accounts(name)) or '(no accounts)'}")


def cmd_start_staking(args: argparse.Namespace, config: OperatorConfig) -> None:
    _require_wallet(config, password=True)
    info = ensure_staking(_client(config, args.chain), config.wallet.name, config.wallet.password)
    print(json.dumps({"enabled": info.enabled, "staking": info.staking}, separators=COMPACT_JSON_SEPARATORS))


def cmd_staking_info(args: argparse.Namespace, config: OperatorConfig) -> None:
    info = _client(config, args.chain).staking_info()
    print(
        json.dumps(
            {
                "enabled": info.enabled,
                "staking": info.staking,
                "weight": info.weight,
                "netStakeWeight": info.net_stake_weight,
                "expectedTime": info.expected_time,
                "errors": info.errors,
            },
            indent=2,
        )
    )


def cmd_reconnect_peers(args: argparse.Namespace, config: OperatorConfig) -> None:
    endpoints = args.peer or list(config.peers)
    if not endpoints:
        raise CLIError("No peers configured; pass --peer or set 'peers' in the config file")
    touched = reconnect_peers(_client(config, args.chain), endpoints)
    print(json.dumps({"reconnected": touched}, separators=COMPACT_JSON_SEPARATORS))


def cmd_encrypt_credentials(args: argparse.Namespace) -> None:
    try:
        secrets = yaml.safe_load(Path(args.source).expanduser().read_text()) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise CLIError(f"Could not read {args.source}: {exc}") from exc
    if not isinstance(secrets, dict):
        raise CLIError(f"{args.source} must contain a mapping of {', '.join(CREDENTIAL_FIELDS)}")
    passphrase = os.environ.get(PASSPHRASE_ENV)
    if not passphrase:
        passphrase = getpass.getpass("New passphrase: ")
        if passphrase != getpass.getpass("Repeat passphrase: "):
            raise CLIError("Passphrases do not match")
    if not passphrase:
        raise CLIError("Passphrase must not be empty")
    save_credentials(args.output, secrets, passphrase)


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        if args.command == "encrypt-credentials":
            cmd_encrypt_credentials(args)
            return
        config = load_config_with_credentials(config_path=args.config, overrides=_overrides(args))
        if args.command == "monitor":
            cmd_monitor(config)
        elif args.command == "consolidate":
            cmd_consolidate(args, config)
        elif args.command == "cross-chain":
            cmd_cross_chain(args, config)
        elif args.command == "send":
            cmd_send(args, config)
        elif args.command == "list-utxos":
            cmd_list_utxos(args, config)
        elif args.command == "balance":
            cmd_balance(args, config)
        elif args.command == "list-wallets":
            cmd_list_wallets(args, config)
        elif args.command == "start-staking":
            cmd_start_staking(args, config)
        elif args.command == "staking-info":
            cmd_staking_info(args, config)
        elif args.command == "reconnect-peers":
            cmd_reconnect_peers(args, config)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except NodeTransportError as exc:
        hint = format_node_hint(exc)
        parser.exit(1, f"error: {exc}\n" + (f"hint: {hint}\n" if hint else ""))
    except (
        CLIError,
        ConfigurationError,
        ConsolidationError,
        CredentialError,
        SchemaError,
        SelectionError,
        TransactionBuildError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
