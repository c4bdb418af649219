import logging

from shared.crypto.chains import Chain
from shared.crypto.clients.base import AdapterRegistry
from shared.crypto.clients.btc import BitcoinAdapter, BitcoinConfig
from shared.crypto.clients.evm import EVMAdapter, EVMConfig
from shared.crypto.clients.sol import SolanaAdapter, SolanaConfig
from shared.crypto.clients.tron import TronAdapter, TronWalletConfig

logger = logging.getLogger(__name__)


def default_registry(settings) -> AdapterRegistry:
    """Register an adapter for every supported chain from SweeperSettings."""
    registry = AdapterRegistry()

    tron_factory = TronWalletConfig.testnet if settings.tron_network != "mainnet" else TronWalletConfig.mainnet
    registry.register(Chain.TRX, TronAdapter(tron_factory(
        settings.tron_api_key,
        fixed_fee_sun=settings.tron_fixed_fee_sun,
        default_permission_id=settings.tron_permission_id,
    )))

    btc_factory = BitcoinConfig.testnet if settings.btc_testnet else BitcoinConfig.mainnet
    registry.register(Chain.BTC, BitcoinAdapter(btc_factory(
        settings.btc_api_url,
        tx_size_bytes=settings.btc_tx_size_bytes,
        fee_target_blocks=settings.btc_fee_target_blocks,
        fallback_fee_rate=settings.btc_fallback_fee_rate,
    )))

    if settings.alchemy_api_key:
        for chain in (Chain.ETH, Chain.BNB, Chain.MATIC):
            evm_config = EVMConfig.for_chain(chain, settings.alchemy_api_key, testnet=settings.evm_testnet)
            registry.register(chain, EVMAdapter(evm_config))
    else:
        logger.warning("ALCHEMY_API_KEY not set; ETH, BNB and MATIC wallets will not be swept")

    sol_factory = SolanaConfig.testnet if settings.solana_network != "mainnet" else SolanaConfig.mainnet
    registry.register(Chain.SOL, SolanaAdapter(sol_factory(
        settings.solana_rpc_url,
        fixed_fee_lamports=settings.solana_fixed_fee_lamports,
    )))

    logger.info("Chain adapters registered: " + ", ".join(chain.value for chain in registry.chains()))
    return registry
