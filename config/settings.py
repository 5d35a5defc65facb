from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Chain RPC (BNB Smart Chain testnet by default)
    rpc_url: str = "https://bsc-testnet-dataseed.bnbchain.org"
    chain_id: int = 97
    rpc_max_rps: float = 10.0
    rpc_timeout_sec: float = 15.0

    # Backend persistence service (tx logging + confirmed history)
    backend_url: str = "https://wallet-backend-ri5i.onrender.com/api"
    backend_timeout_sec: float = 10.0

    # Asset whitelist: native coin + two token contracts
    native_symbol: str = "BNB"
    usdt_contract_address: str = "0x787A697324dbA4AB965C58CD33c13ff5eeA6295F"
    usdc_contract_address: str = "0x342e3aA1248AB77E319e3331C6fD3f1F2d4B36B1"
    # Declared precision for amount parsing. Sends are scaled by the contract's
    # decimals(), fetched before the nonce is taken; an amount finer than that
    # is rejected as "more than N decimal places" without touching the nonce.
    usdt_decimals: int = 18
    usdc_decimals: int = 18

    # Fee estimation
    fee_debounce_sec: float = 0.5

    # Replace-by-fee cancellation
    cancel_gas_bump_pct: int = 10
    cancel_min_increment_wei: int = 1_000_000_000  # 1 gwei
    cancel_gas_limit: int = 21_000

    # Confirmation watching
    confirm_poll_interval_sec: float = 3.0
    confirm_timeout_sec: float = 1800.0

    # Wallet key for the CLI only. NEVER LOG THIS
    wallet_private_key: str = ""

    log_level: str = "INFO"


settings = Settings()
