# Outcome tables, in the order the contract declares its enum variants
success_labels = [
    "VestingSetupSuccess",
    "VestedBalanceAdded",
    "VestedBalanceRemoved",
    "VestedBalanceScheduleThawed",
    "VestedBalanceScheduleRequested",
    "VestedBalanceScheduleApproved",
]

error_labels = [
    "BadOrigin",
    "VestedBalanceAlreadyExist",
    "VestedBalanceNotFound",
    "VestedBalanceScheduleNotFound",
    "VestedBalanceScheduleNotLiquid",
    "VestedBalanceScheduleNotRequested",
]

# Discriminant byte -> (label prefix, table)
SUCCESS_DISCRIMINANT = 0
ERROR_DISCRIMINANT = 1
SUCCESS_PREFIX = "Success"
ERROR_PREFIX = "Error"

# Topic echoed at the head of every event payload
TOPIC_LENGTH = 32

# Confirmation event filter
CONTRACTS_SECTION = "contracts"
CONTRACT_EMITTED_METHOD = "ContractEmitted"

# Contract message and its argument labels
ADD_VESTED_BALANCE_MESSAGE = "add_vested_balance"
ADDRESS_ARG = "address"
BALANCE_ARG = "original_balance"

# Compute/storage budget (WeightV2) for one add_vested_balance call
GAS_REF_TIME = 300_000_000_000
GAS_PROOF_SIZE = 500_000
STORAGE_DEPOSIT_LIMIT = None

# Throttling
ROW_DELAY_SECONDS = 20.0
CONFIRMATION_TIMEOUT_SECONDS = 120.0
# How long an unsubscribed watch may keep the websocket before it is reset
UNWATCH_GRACE_SECONDS = 1.0

# Pool statuses after which no confirmation can arrive
TERMINAL_STATUSES = ["Invalid", "Dropped", "Usurped"]

# CSV columns
NUMBER_COLUMN = "No"
ADDRESS_COLUMN = "Address"
BALANCE_COLUMN = "Balance"

# Signer
CRYPTO_TYPE = "sr25519"
