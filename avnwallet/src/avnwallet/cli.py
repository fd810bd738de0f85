"""
Avian Wallet CLI - Derive addresses, select coins, send payments and scan history.
"""

from __future__ import annotations

import asyncio
import sys
from decimal import Decimal, InvalidOperation

import typer
from loguru import logger

from avnwallet.config import Settings, get_settings
from avnwallet.constants import COIN, DEFAULT_DERIVATION_PATH
from avnwallet.errors import WalletError

app = typer.Typer(
    name="avn-wallet",
    help="Avian Wallet Transaction Engine",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def parse_amount(amount: str) -> int:
    """Parse a display amount such as "1.5" into integer units."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise typer.BadParameter(f"Invalid amount: {amount}") from None
    units = value * COIN
    if units <= 0 or units != units.to_integral_value():
        raise typer.BadParameter(f"Amount must be positive with at most 8 decimals: {amount}")
    return int(units)


def parse_strategy(strategy: str):
    """Map a --strategy value to a CoinSelectionStrategy; "auto" gives None."""
    from avnwallet.wallet.models import CoinSelectionStrategy

    if strategy == "auto":
        return None
    try:
        return CoinSelectionStrategy(strategy)
    except ValueError:
        choices = ", ".join(["auto", *(s.value for s in CoinSelectionStrategy)])
        raise typer.BadParameter(f"Unknown strategy {strategy!r}, choose from {choices}") from None


def parse_outpoints(values: list[str] | None, strategy) -> list[str]:
    """Normalize repeated --utxo txid:vout values."""
    from avnwallet.wallet.models import CoinSelectionStrategy

    if strategy == CoinSelectionStrategy.MANUAL and not values:
        raise typer.BadParameter("Manual strategy needs at least one --utxo txid:vout")
    outpoints = []
    for value in values or []:
        txid, sep, vout = value.partition(":")
        try:
            bytes.fromhex(txid)
            index = int(vout)
        except ValueError:
            raise typer.BadParameter(f"Expected txid:vout, got {value!r}") from None
        if not sep or len(txid) != 64 or index < 0:
            raise typer.BadParameter(f"Expected txid:vout, got {value!r}")
        outpoints.append(f"{txid.lower()}:{index}")
    return outpoints


async def _choose_inputs(
    service, address: str, amount: int, strategy, outpoints: list[str], include_dust: bool
):
    """Settle the strategy, and the manual inputs when outpoints were named."""
    from avnwallet.wallet.models import CoinSelectionStrategy

    if outpoints:
        if strategy not in (None, CoinSelectionStrategy.MANUAL):
            logger.warning(f"--utxo given, using manual instead of {strategy.value}")
        return CoinSelectionStrategy.MANUAL, await service.resolve_outpoints(address, outpoints)
    if strategy is None:
        strategy = await service.recommend_strategy(address, amount, consolidate_dust=include_dust)
    return strategy, None


def _load_key(wif: str | None, mnemonic: str | None, path: str, settings: Settings):
    from avnwallet.wallet.bip32 import HDKey, mnemonic_to_seed
    from avnwallet.wallet.keys import WalletKey

    params = settings.network_params
    if wif:
        return WalletKey.from_wif(wif, params)
    if mnemonic:
        return HDKey.from_seed(mnemonic_to_seed(mnemonic)).derive(path).to_wallet_key(params)

    logger.error("Key required. Use --wif / AVN_WIF or --mnemonic / AVN_MNEMONIC")
    raise typer.Exit(1)


def _create_backend(settings: Settings):
    from avnwallet.backends import ElectrumBackend, NodeRPCBackend

    if settings.backend == "node":
        return NodeRPCBackend(
            rpc_url=settings.rpc_url,
            rpc_user=settings.rpc_user,
            rpc_password=settings.rpc_password,
        )
    return ElectrumBackend(
        host=settings.electrum_host,
        port=settings.electrum_port,
        use_ssl=settings.electrum_ssl,
        params=settings.network_params,
    )


def _create_service(settings: Settings):
    from avnwallet.storage import JsonWalletStore
    from avnwallet.wallet.reservation import UTXOReservations
    from avnwallet.wallet.service import WalletService

    return WalletService(
        backend=_create_backend(settings),
        store=JsonWalletStore(settings.data_dir),
        params=settings.network_params,
        reservations=UTXOReservations(ttl=settings.reservation_ttl),
        fee=settings.fee,
        dust_threshold=settings.dust_threshold,
        max_inputs=settings.max_inputs,
        min_confirmations=settings.min_confirmations,
    )


@app.command()
def address(
    wif: str = typer.Option(None, "--wif", envvar="AVN_WIF", help="Private key in WIF"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="AVN_MNEMONIC", help="BIP39 mnemonic"),
    path: str = typer.Option(DEFAULT_DERIVATION_PATH, "--path", "-p", help="Derivation path"),
    save_as: str | None = typer.Option(None, "--save-as", help="Register under this wallet name"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", envvar="AVN_LOG_LEVEL"),
) -> None:
    """Show the P2PKH address of a key, optionally registering it as a wallet."""
    setup_logging(log_level)
    settings = get_settings()

    try:
        key = _load_key(wif, mnemonic, path, settings)
    except ValueError as e:
        logger.error(f"Invalid key: {e}")
        raise typer.Exit(1)

    typer.echo(key.address)

    if save_as:
        from avnwallet.storage import JsonWalletStore
        from avnwallet.wallet.models import WalletRecord

        try:
            JsonWalletStore(settings.data_dir).add_wallet(
                WalletRecord(name=save_as, address=key.address)
            )
        except WalletError as e:
            logger.error(f"Failed to save wallet: {e}")
            raise typer.Exit(1)


@app.command()
def select(
    address: str = typer.Argument(..., help="Wallet address to select from"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in AVN"),
    strategy: str = typer.Option(
        "best_fit", "--strategy", "-s", help="Selection strategy, or auto to pick one"
    ),
    utxo: list[str] | None = typer.Option(
        None, "--utxo", "-u", help="Spend exactly this txid:vout (repeatable)"
    ),
    include_dust: bool = typer.Option(False, "--include-dust"),
    allow_unconfirmed: bool = typer.Option(False, "--allow-unconfirmed"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", envvar="AVN_LOG_LEVEL"),
) -> None:
    """Preview the coins a payment would spend."""
    setup_logging(log_level)
    chosen = parse_strategy(strategy)
    outpoints = parse_outpoints(utxo, chosen)
    asyncio.run(
        _select(address, parse_amount(amount), chosen, outpoints, include_dust, allow_unconfirmed)
    )


async def _select(
    address: str,
    amount: int,
    strategy,
    outpoints: list[str],
    include_dust: bool,
    allow_unconfirmed: bool,
) -> None:
    from avnwallet.wallet.models import InsufficientFunds

    settings = get_settings()
    service = _create_service(settings)
    try:
        strategy, manual = await _choose_inputs(
            service, address, amount, strategy, outpoints, include_dust
        )
        options = service.selection_options(
            amount,
            strategy=strategy,
            include_dust=include_dust,
            allow_unconfirmed=allow_unconfirmed,
            manual_selection=manual,
        )
        result = await service.select(address, options)
        if isinstance(result, InsufficientFunds):
            logger.error(f"Insufficient funds: need {result.required}, have {result.available}")
            raise typer.Exit(1)

        typer.echo(f"\nStrategy: {result.strategy.value}")
        for utxo in result.selected:
            typer.echo(f"  {utxo.outpoint}  {utxo.value:>15,}  ({utxo.confirmations} conf)")
        typer.echo(f"Total input: {result.total_input:,}")
        typer.echo(f"Fee:         {result.fee:,}")
        typer.echo(f"Change:      {result.change:,}")
        typer.echo(f"Efficiency:  {result.efficiency:.2%}")
    except (ValueError, WalletError) as e:
        logger.error(f"Selection failed: {e}")
        raise typer.Exit(1)
    finally:
        await service.close()


@app.command()
def send(
    destination: str = typer.Argument(..., help="Destination address"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in AVN"),
    wif: str = typer.Option(None, "--wif", envvar="AVN_WIF", help="Private key in WIF"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="AVN_MNEMONIC", help="BIP39 mnemonic"),
    path: str = typer.Option(DEFAULT_DERIVATION_PATH, "--path", "-p", help="Derivation path"),
    strategy: str = typer.Option(
        "best_fit", "--strategy", "-s", help="Selection strategy, or auto to pick one"
    ),
    utxo: list[str] | None = typer.Option(
        None, "--utxo", "-u", help="Spend exactly this txid:vout (repeatable)"
    ),
    change_address: str | None = typer.Option(None, "--change-address"),
    include_dust: bool = typer.Option(False, "--include-dust"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", envvar="AVN_LOG_LEVEL"),
) -> None:
    """Build, sign and broadcast a payment."""
    setup_logging(log_level)
    chosen = parse_strategy(strategy)
    outpoints = parse_outpoints(utxo, chosen)
    settings = get_settings()

    try:
        key = _load_key(wif, mnemonic, path, settings)
    except ValueError as e:
        logger.error(f"Invalid key: {e}")
        raise typer.Exit(1)

    asyncio.run(
        _send(
            settings,
            key,
            destination,
            parse_amount(amount),
            chosen,
            outpoints,
            change_address,
            include_dust,
        )
    )


async def _send(
    settings: Settings,
    key,
    destination: str,
    amount: int,
    strategy,
    outpoints: list[str],
    change_address: str | None,
    include_dust: bool,
) -> None:
    service = _create_service(settings)
    try:
        strategy, manual = await _choose_inputs(
            service, key.address, amount, strategy, outpoints, include_dust
        )
        signed = await service.send(
            key,
            destination,
            amount,
            strategy=strategy,
            change_address=change_address,
            include_dust=include_dust,
            manual_selection=manual,
        )
        typer.echo(f"\nTransaction broadcast: {signed.txid}")
        typer.echo(f"Fee: {signed.fee:,}  Change: {signed.change:,}")
    except (ValueError, WalletError) as e:
        logger.error(f"Send failed: {e}")
        raise typer.Exit(1)
    finally:
        await service.close()


@app.command()
def history(
    address: str = typer.Argument(..., help="Wallet address"),
    only_new: bool = typer.Option(False, "--only-new", help="Skip already recorded transactions"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", envvar="AVN_LOG_LEVEL"),
) -> None:
    """Scan and classify an address's transaction history."""
    setup_logging(log_level)
    asyncio.run(_history(address, only_new))


async def _history(address: str, only_new: bool) -> None:
    settings = get_settings()
    service = _create_service(settings)
    try:
        await service.scan_history(address, only_new=only_new)
        service.cleanup_misclassified_transactions(address)
        records = service.store.get_transaction_history(address)
    except WalletError as e:
        logger.error(f"History scan failed: {e}")
        raise typer.Exit(1)
    finally:
        await service.close()

    if not records:
        typer.echo("\nNo transactions found.")
        return

    typer.echo("")
    for record in records:
        sign = "-" if record.type == "send" else "+"
        typer.echo(
            f"{record.timestamp:%Y-%m-%d %H:%M}  {sign}{record.amount:.8f} AVN  "
            f"{record.type:<7}  {record.address}  ({record.confirmations} conf)  {record.txid}"
        )


@app.command("sign-message")
def sign_message_cmd(
    message: str = typer.Argument(..., help="Message to sign"),
    wif: str = typer.Option(None, "--wif", envvar="AVN_WIF", help="Private key in WIF"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="AVN_MNEMONIC", help="BIP39 mnemonic"),
    path: str = typer.Option(DEFAULT_DERIVATION_PATH, "--path", "-p", help="Derivation path"),
) -> None:
    """Sign a message with the network message prefix."""
    from avnwallet.wallet.message import sign_message

    setup_logging()
    settings = get_settings()
    try:
        key = _load_key(wif, mnemonic, path, settings)
    except ValueError as e:
        logger.error(f"Invalid key: {e}")
        raise typer.Exit(1)

    typer.echo(sign_message(key, message))


@app.command("verify-message")
def verify_message_cmd(
    address: str = typer.Argument(..., help="Signing address"),
    signature: str = typer.Argument(..., help="Base64 signature"),
    message: str = typer.Argument(..., help="Signed message"),
) -> None:
    """Verify a signed message against an address."""
    from avnwallet.wallet.message import verify_message

    setup_logging()
    if not verify_message(address, message, signature, get_settings().network_params):
        typer.echo("Signature is INVALID")
        raise typer.Exit(1)
    typer.echo("Signature is valid")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
