"""
Zone Extractor

Turns candles or price buckets into a short, ranked list of significant
price levels above and below the current price.

Two signal definitions, picked by the input:

- Delta spikes (candles): |close[i] - close[i-1]| above a fixed floor or
  above the top `delta_top_pct` percent of all deltas.
- Volume anomalies (buckets): volume above median * volume_factor, or above
  mean + std_k * std (mean * mean_k when that flags nothing), whichever
  threshold is lower.

Shared post-processing:
    rank by strength -> greedy de-duplication by min_separation ->
    range filter -> split above/below -> nearest first, max_levels per side ->
    confluence score

When no candidate clears the threshold the result is empty. There is no
fallback to the top-K raw magnitudes for either strategy.

Confluence score weights (sum to 100):
    strength 40   signal / strongest accepted signal
    density  25   accepted neighbours within density_radius, saturating at 3
    recency  20   linear decay across the input's time span
    reaction 15   1.0 with two or more neighbours, 0.5 with one
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from deltazones.errors import BadInput
from deltazones.types import CANDLE_GRANULARITY, Candle, PriceBucket, Zone, ZoneSet

logger = logging.getLogger(__name__)

WEIGHT_STRENGTH = 40
WEIGHT_DENSITY = 25
WEIGHT_RECENCY = 20
WEIGHT_REACTION = 15

DENSITY_SATURATION = 3


@dataclass
class ZoneOptions:
    """Tuning knobs for zone extraction"""
    min_separation: float = 50.0
    range_limit: Optional[float] = 300.0
    range_limit_pct: Optional[float] = None
    max_levels: int = 30
    volume_factor: float = 3.0
    delta_floor: Optional[float] = None
    delta_top_pct: float = 3.0
    std_k: float = 2.0
    mean_k: float = 1.5
    score: bool = True
    density_radius: Optional[float] = None

    def validate(self):
        if self.min_separation < 0:
            raise BadInput("min_separation must be >= 0")
        if self.range_limit is not None and self.range_limit < 0:
            raise BadInput("range_limit must be >= 0")
        if self.range_limit_pct is not None and self.range_limit_pct < 0:
            raise BadInput("range_limit_pct must be >= 0")
        if self.max_levels < 1:
            raise BadInput("max_levels must be >= 1")
        if self.volume_factor <= 0:
            raise BadInput("volume_factor must be positive")
        if not 0 < self.delta_top_pct <= 100:
            raise BadInput("delta_top_pct must be in (0, 100]")
        return self

    @property
    def radius(self) -> float:
        if self.density_radius is not None:
            return self.density_radius
        return 2 * self.min_separation


@dataclass
class _Candidate:
    price: float
    volume: float
    delta: float
    timestamp: int
    strength: float


def _empty() -> ZoneSet:
    return ZoneSet(above=[], below=[])


def _check_price(current_price: float):
    if current_price is None or not current_price > 0:
        raise BadInput(f"current_price must be positive, got {current_price!r}")


# ============================================================================
# STRATEGIES
# ============================================================================

def extract_delta_zones(candles: Sequence[Candle], current_price: float,
                        options: Optional[ZoneOptions] = None) -> ZoneSet:
    """
    Delta-spike zones from consecutive candle closes.

    Args:
        candles: Candles (sorted by open time here if they aren't already)
        current_price: Reference price for the above/below split
        options: Tuning knobs

    Returns:
        ZoneSet with nearest-first `above` and `below` lists
    """
    options = (options or ZoneOptions()).validate()
    _check_price(current_price)

    candles = sorted(candles, key=lambda c: c.time)
    if len(candles) < 2:
        return _empty()

    closes = np.array([c.close for c in candles], dtype=float)
    deltas = np.diff(closes)
    magnitudes = np.abs(deltas)

    cutoff = np.percentile(magnitudes, 100 - options.delta_top_pct)
    flagged = magnitudes > cutoff
    if options.delta_floor is not None:
        flagged |= magnitudes > options.delta_floor
    flagged &= magnitudes > 0

    candidates = []
    for i in np.flatnonzero(flagged):
        candle = candles[i + 1]
        candidates.append(_Candidate(
            price=candle.close,
            volume=candle.volume,
            delta=float(deltas[i]),
            timestamp=candle.time,
            strength=float(magnitudes[i])
        ))

    logger.debug(f"Delta strategy: {len(candidates)} candidates over {len(candles)} candles (cutoff {cutoff:.4f})")
    return _finalize(candidates, current_price, options, (candles[0].time, candles[-1].time))


def volume_threshold(volumes: np.ndarray, options: ZoneOptions) -> Optional[float]:
    """
    Looser of the median-factor and statistical thresholds.

    Returns:
        The threshold, or None when there is no positive volume at all
    """
    positive = volumes[volumes > 0]
    if positive.size == 0:
        return None

    median_threshold = float(np.median(positive)) * options.volume_factor

    mean = float(volumes.mean())
    stat_threshold = mean + options.std_k * float(volumes.std())
    if not (volumes > stat_threshold).any():
        stat_threshold = mean * options.mean_k

    return min(median_threshold, stat_threshold)


def extract_volume_zones(buckets: Sequence[PriceBucket], current_price: float,
                         options: Optional[ZoneOptions] = None) -> ZoneSet:
    """
    Volume-anomaly zones from aggregated price buckets.

    Trade buckets rank by |buy - sell|; candle buckets have no side split and
    rank by volume.
    """
    options = (options or ZoneOptions()).validate()
    _check_price(current_price)

    buckets = list(buckets)
    if len(buckets) < 2:
        return _empty()

    granularities = {b.granularity for b in buckets}
    if len(granularities) > 1:
        raise BadInput("Buckets mix trade and candle granularity")
    by_volume_only = granularities.pop() == CANDLE_GRANULARITY

    volumes = np.array([b.volume for b in buckets], dtype=float)
    threshold = volume_threshold(volumes, options)
    if threshold is None:
        return _empty()

    candidates = [
        _Candidate(
            price=b.price,
            volume=b.volume,
            delta=b.delta,
            timestamp=b.last_timestamp,
            strength=b.volume if by_volume_only else abs(b.delta)
        )
        for b, vol in zip(buckets, volumes)
        if vol > threshold
    ]

    logger.debug(f"Volume strategy: {len(candidates)} of {len(buckets)} buckets above {threshold:.4f}")
    timestamps = [b.last_timestamp for b in buckets]
    return _finalize(candidates, current_price, options, (min(timestamps), max(timestamps)))


def extract(source: Sequence, current_price: float, options: Optional[ZoneOptions] = None) -> ZoneSet:
    """Run the strategy matching the input: candles -> delta, buckets -> volume"""
    source = list(source)
    if not source:
        _check_price(current_price)
        return _empty()
    if isinstance(source[0], Candle):
        return extract_delta_zones(source, current_price, options)
    if isinstance(source[0], PriceBucket):
        return extract_volume_zones(source, current_price, options)
    raise BadInput(f"Cannot extract zones from {type(source[0]).__name__}")


# ============================================================================
# POST-PROCESSING
# ============================================================================

def _deduplicate(ranked: List[_Candidate], min_separation: float) -> List[_Candidate]:
    accepted = []
    for candidate in ranked:
        if all(abs(candidate.price - a.price) >= min_separation for a in accepted):
            accepted.append(candidate)
    return accepted


def _within_range(candidate: _Candidate, current_price: float, options: ZoneOptions) -> bool:
    distance = abs(candidate.price - current_price)
    if options.range_limit is not None and distance > options.range_limit:
        return False
    if options.range_limit_pct is not None and distance > current_price * options.range_limit_pct / 100:
        return False
    return True


def confluence_score(candidate: _Candidate, accepted: List[_Candidate], max_strength: float,
                     span: Tuple[int, int], radius: float) -> int:
    strength = candidate.strength / max_strength if max_strength > 0 else 0.0

    neighbours = sum(
        1 for other in accepted
        if other is not candidate and abs(other.price - candidate.price) <= radius
    )
    density = min(neighbours / DENSITY_SATURATION, 1.0)

    earliest, latest = span
    if latest > earliest:
        recency = 1.0 - (latest - candidate.timestamp) / (latest - earliest)
        recency = min(max(recency, 0.0), 1.0)
    else:
        recency = 1.0

    if neighbours >= 2:
        reaction = 1.0
    elif neighbours == 1:
        reaction = 0.5
    else:
        reaction = 0.0

    return int(round(
        WEIGHT_STRENGTH * strength
        + WEIGHT_DENSITY * density
        + WEIGHT_RECENCY * recency
        + WEIGHT_REACTION * reaction
    ))


def _finalize(candidates: List[_Candidate], current_price: float, options: ZoneOptions,
              span: Tuple[int, int]) -> ZoneSet:
    if not candidates:
        return _empty()

    ranked = sorted(candidates, key=lambda c: (-c.strength, -c.volume, c.price))
    accepted = _deduplicate(ranked, options.min_separation)
    accepted = [c for c in accepted if _within_range(c, current_price, options)]

    max_strength = max((c.strength for c in accepted), default=0.0)

    def to_zone(c: _Candidate) -> Zone:
        score = None
        if options.score:
            score = confluence_score(c, accepted, max_strength, span, options.radius)
        return Zone(
            price=c.price,
            volume=c.volume,
            delta=c.delta,
            timestamp=c.timestamp,
            distance=abs(c.price - current_price),
            score=score
        )

    zones = [to_zone(c) for c in accepted]
    above = sorted((z for z in zones if z.price > current_price), key=lambda z: (z.distance, z.price))
    below = sorted((z for z in zones if z.price < current_price), key=lambda z: (z.distance, -z.price))

    return ZoneSet(above=above[:options.max_levels], below=below[:options.max_levels])
