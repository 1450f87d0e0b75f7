"""
Configuration schema validation using Pydantic
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import InvalidPoolInvariant
from .pools import ConstantProduct, ConstantSum, Pool, WeightedGeometricMean


class PoolConfig(BaseModel):
    """Single pool entry"""

    id: str = Field(min_length=1, description="Pool identifier")
    tokens: List[str] = Field(min_length=2, description="Pool tokens in pool order")
    reserves: List[float] = Field(min_length=2, description="Reserve per token")
    fee: Optional[float] = Field(
        default=None, gt=0, le=1, description="Fee fraction applied to deposits"
    )
    fee_bps: Optional[float] = Field(
        default=None, ge=0, lt=10000, description="Router fee in basis points"
    )
    kind: Literal["constant_product", "weighted", "constant_sum"] = "constant_product"
    weights: Optional[List[float]] = None
    tax_bps: float = Field(default=0, ge=0, lt=10000)

    @field_validator("reserves")
    @classmethod
    def validate_reserves(cls, v):
        for reserve in v:
            if reserve <= 0:
                raise ValueError(f"Reserves must be positive, got {reserve}")
        return v

    @model_validator(mode="after")
    def validate_pool_shape(self):
        if self.fee is None and self.fee_bps is None:
            raise ValueError("one of fee or fee_bps is required")
        if self.fee is not None and self.fee_bps is not None:
            raise ValueError("fee and fee_bps are mutually exclusive")
        if len(self.reserves) != len(self.tokens):
            raise ValueError(
                f"{len(self.reserves)} reserves for {len(self.tokens)} tokens"
            )
        if self.kind == "constant_product" and len(self.tokens) != 2:
            raise ValueError("constant_product pools hold exactly two tokens")
        if self.weights is not None:
            if self.kind != "weighted":
                raise ValueError("weights are only allowed for weighted pools")
            if len(self.weights) != len(self.tokens):
                raise ValueError(
                    f"{len(self.weights)} weights for {len(self.tokens)} tokens"
                )
        return self

    def to_pool(self) -> Pool:
        """
        Raises:
            InvalidPoolInvariant: If the entry violates a pool invariant
        """
        if self.kind == "weighted":
            if self.weights is None:
                kind = WeightedGeometricMean.equal(len(self.tokens))
            else:
                kind = WeightedGeometricMean(weights=tuple(self.weights))
        elif self.kind == "constant_sum":
            kind = ConstantSum()
        else:
            kind = ConstantProduct()

        if self.fee_bps is not None:
            return Pool.from_fee_bps(
                id=self.id,
                tokens=self.tokens,
                reserves=self.reserves,
                fee_bps=self.fee_bps,
                kind=kind,
                tax_bps=self.tax_bps,
            )
        return Pool(
            id=self.id,
            tokens=tuple(self.tokens),
            reserves=tuple(self.reserves),
            fee=self.fee,
            kind=kind,
            tax=self.tax_bps / 10000.0,
        )


class SolverConfig(BaseModel):
    """Numerical solver bounds"""

    max_iterations: int = Field(default=10000, ge=1, le=10_000_000)
    tolerance: float = Field(default=1e-7, gt=0, le=1e-2)
    time_limit_sec: float = Field(default=10.0, gt=0, le=3600)
    conic_solver: Literal["CLARABEL", "ECOS", "SCS"] = "CLARABEL"
    retry_relaxed: bool = True
    relax_factor: float = Field(default=100.0, gt=1, le=1e6)


class SearchConfig(BaseModel):
    """Cycle search and selection parameters"""

    start_token: str = Field(min_length=1, description="Start and end token")
    max_cycle_length: int = Field(default=4, ge=2, le=10)
    max_cycles: int = Field(default=1000, ge=1)
    formulation: Literal["linear", "conic"] = "linear"
    max_trade_fraction: Optional[float] = Field(default=None, gt=0, le=1)
    budget: float = Field(gt=0, description="Amount of the start token available")
    max_selected: int = Field(default=1, ge=1, le=100)
    selection: Literal["enumerate", "milp"] = "enumerate"
    exact_count: bool = False
    max_workers: Optional[int] = Field(default=None, ge=1, le=256)
    use_processes: bool = False
    min_profit: float = Field(default=0.0, ge=0)
    prices: Optional[Dict[str, float]] = None

    @field_validator("start_token")
    @classmethod
    def validate_start_token(cls, v):
        if not v.strip():
            raise ValueError("start_token cannot be blank")
        return v.strip()

    @field_validator("prices")
    @classmethod
    def validate_prices(cls, v):
        if v is None:
            return v
        if not v:
            raise ValueError("prices cannot be empty when given")
        for token, price in v.items():
            if price < 0:
                raise ValueError(f"Price for {token} cannot be negative: {price}")
        return v

    @model_validator(mode="after")
    def validate_exact_count(self):
        if self.exact_count and self.selection != "milp":
            raise ValueError("exact_count requires selection 'milp'")
        return self


class ArbitrageConfig(BaseModel):
    """Complete configuration schema"""

    search: SearchConfig
    solver: SolverConfig = Field(default_factory=SolverConfig)
    pools: List[PoolConfig] = Field(min_length=1)

    @field_validator("pools")
    @classmethod
    def validate_unique_ids(cls, v):
        seen = set()
        for pool in v:
            if pool.id in seen:
                raise ValueError(f"Duplicate pool id: {pool.id}")
            seen.add(pool.id)
        return v

    def build_pools(self) -> List[Pool]:
        """
        Raises:
            InvalidPoolInvariant: If a pool entry is invalid
        """
        pools = []
        for entry in self.pools:
            try:
                pools.append(entry.to_pool())
            except InvalidPoolInvariant as e:
                e.pool_id = e.pool_id or entry.id
                raise
        return pools


def validate_arbitrage_config(config_dict: Dict) -> ArbitrageConfig:
    """
    Validate an arbitrage configuration dictionary

    Args:
        config_dict: Dictionary representation of the config

    Returns:
        Validated ArbitrageConfig object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return ArbitrageConfig(**config_dict)
