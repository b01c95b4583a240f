"""
パチンコ 収支スランプ シミュレーター
Pachinko Slump Simulator

初当たり確率・RUSH突入率・継続率・上位RUSH（LT）・出玉振り分けから
差玉収支の推移（スランプグラフ）と期待値を算出するツール
"""

import argparse
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np


DEFAULT_TOTAL_SPINS = 2500     # スピン数未指定時の総回転数
DEFAULT_HIT_ODDS = 319.0       # 初当たり確率（1/x）の既定値
DEFAULT_BORDER = 18.0          # 1k（250玉）あたり回転数の既定値
DEFAULT_EXCHANGE_RATE = 4.0    # 換金率（円/玉）の既定値
BALLS_PER_1K = 250             # 千円あたり貸玉数
MAX_COMBO = 1000               # 連チャン数の上限（無限ループ防止）
WEIGHT_TOLERANCE = 1e-9


@dataclass(frozen=True)
class PayoutEntry:
    """振り分け1行分"""
    amount: float           # 出玉（発）
    weight_percent: float   # 振り分け率（%）


@dataclass(frozen=True)
class SimulationConfig:
    """1回のシミュレーションに使う正規化済みスペック"""
    hit_probability: float          # 初当たり確率（例: 1/319 → 0.003135）
    rush_entry_rate: float          # RUSH突入率（%）
    normal_continue_rate: float     # 通常RUSH継続率（%）
    upper_continue_rate: float      # 上位RUSH（LT）継続率（%）
    upper_entry_rate: float         # 通常RUSH中のLT移行率（%）
    first_hit_payout: float         # 初当たり出玉
    ball_border: float = DEFAULT_BORDER             # 1k回転数
    exchange_rate: float = DEFAULT_EXCHANGE_RATE    # 換金率
    normal_payout_distribution: Tuple[PayoutEntry, ...] = ()
    upper_payout_distribution: Tuple[PayoutEntry, ...] = ()

    @property
    def consumption_per_spin(self) -> float:
        """1回転あたりの消費玉"""
        return BALLS_PER_1K / self.ball_border

    @property
    def is_direct_to_upper(self) -> bool:
        """LT直行スペック（初当たりのRUSHが最初から上位モード）かどうか"""
        return self.normal_continue_rate == 0 and self.upper_entry_rate == 100


class RushState(Enum):
    """RUSH中のモード。遷移は NORMAL → UPPER の一方向のみ"""
    NORMAL = "normal"
    UPPER = "upper"

    def escalate(self) -> "RushState":
        return RushState.UPPER


@dataclass
class RunState:
    """1回の初当たりから始まる連チャン中の状態"""
    mode: RushState
    combo_length: int = 1           # 連チャン数（初当たり含む）
    session_payout: float = 0.0     # この連チャンでの合計出玉
    rush_payouts: List[float] = field(default_factory=list)


@dataclass
class RushEvent:
    """1回の初当たり〜連チャン終了の記録"""
    spin: int                   # 初当たりした回転数
    combo_length: int           # 連チャン数（初当たり含む）
    first_hit_payout: float     # 初当たり出玉
    rush_payouts: List[float]   # RUSH中の各当たり出玉リスト
    session_payout: float       # 合計出玉
    final_mode: RushState = RushState.NORMAL


@dataclass(frozen=True)
class SlumpPoint:
    """スランプグラフの1点"""
    spin: int       # 回転数
    balance: int    # 収支（円）


@dataclass
class SimulationStatistics:
    """1回の稼働の集計結果"""
    jackpot_count: int
    max_combo_length: int
    average_combo_length: float
    total_payout_balls: float
    max_session_payout: float
    theoretical_expected_value: int     # 稼働中の平均出玉から求めた期待値（円）
    average_session_payout: int = 0
    final_balance: int = 0


@dataclass
class SimulationResult:
    """シミュレーション結果（スランプ推移 + 集計）"""
    trajectory: List[SlumpPoint]
    statistics: SimulationStatistics
    events: List[RushEvent] = field(default_factory=list)


# ---------------------------------------------------------------------------
# 入力値の正規化
# ---------------------------------------------------------------------------

def _to_number(value: Any, default: float = 0.0) -> float:
    """数値に変換。空文字・非数値・NaN/inf は default"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def _positive_or_default(value: Any, default: float) -> float:
    number = _to_number(value)
    return number if number > 0 else default


def normalize_distribution(entries: Optional[Sequence[Any]]) -> Tuple[PayoutEntry, ...]:
    """
    振り分け表を PayoutEntry のタプルに変換

    各行は {"balls": 出玉, "rate": 振り分け率} の辞書、(出玉, 率) のペア、
    または PayoutEntry。数値にできない値は 0 として扱う（行の順序は保持）。
    """
    normalized = []
    for entry in entries or ():
        if isinstance(entry, PayoutEntry):
            amount, weight = entry.amount, entry.weight_percent
        elif isinstance(entry, Mapping):
            amount, weight = entry.get("balls"), entry.get("rate")
        elif isinstance(entry, (list, tuple)):
            amount, weight = (list(entry) + [None, None])[:2]
        else:
            amount, weight = None, None
        normalized.append(PayoutEntry(_to_number(amount), _to_number(weight)))
    return tuple(normalized)


def normalize_settings(raw: Mapping[str, Any]) -> SimulationConfig:
    """
    フォーム入力などの生の設定値から SimulationConfig を作る

    Args:
        raw: 設定値（数値または数値文字列）。キーは hit_odds, rush_rate,
            continue_rate, lt_entry_rate, lt_continue_rate, first_bonus,
            border, exchange_rate, payouts, upper_payouts

    Returns:
        SimulationConfig: 正規化済みスペック（例外は投げない）
    """
    hit_odds = _positive_or_default(raw.get("hit_odds"), DEFAULT_HIT_ODDS)
    return SimulationConfig(
        hit_probability=1 / hit_odds,
        rush_entry_rate=_to_number(raw.get("rush_rate")),
        normal_continue_rate=_to_number(raw.get("continue_rate")),
        upper_continue_rate=_to_number(raw.get("lt_continue_rate")),
        upper_entry_rate=_to_number(raw.get("lt_entry_rate")),
        first_hit_payout=_to_number(raw.get("first_bonus")),
        ball_border=_positive_or_default(raw.get("border"), DEFAULT_BORDER),
        exchange_rate=_positive_or_default(raw.get("exchange_rate"), DEFAULT_EXCHANGE_RATE),
        normal_payout_distribution=normalize_distribution(raw.get("payouts")),
        upper_payout_distribution=normalize_distribution(raw.get("upper_payouts")),
    )


def normalize_spin_count(value: Any) -> int:
    """総回転数を正の整数に。不正値は DEFAULT_TOTAL_SPINS"""
    spins = int(_to_number(value))
    return spins if spins > 0 else DEFAULT_TOTAL_SPINS


# ---------------------------------------------------------------------------
# 機種タイプ（RUSHの構成）
# ---------------------------------------------------------------------------

class RushMode(Enum):
    """機種タイプ"""
    NORMAL_ONLY = "normal"          # 上位RUSHのない王道スペック
    NORMAL_WITH_LT = "normal_lt"    # 右打ち中の移行抽選で上位を目指すスペック
    LT_ONLY = "lt_only"             # 突入＝上位RUSH確定のスペック


RUSH_MODE_LABELS = {
    RushMode.NORMAL_ONLY: "通常RUSHのみ",
    RushMode.NORMAL_WITH_LT: "通常RUSH + LT",
    RushMode.LT_ONLY: "LT直行・LTのみ",
}

# 初期スペック（1/319、RUSH突入70%、継続81%、LT移行10%・継続90%）
DEFAULT_SETTINGS: Dict[str, Any] = {
    "hit_odds": 319,
    "rush_rate": 70,
    "continue_rate": 81,
    "first_bonus": 450,
    "border": 18,
    "exchange_rate": 4.0,
    "lt_entry_rate": 10,
    "lt_continue_rate": 90,
    "payouts": [{"balls": 1500, "rate": 100}],
    "upper_payouts": [{"balls": 1500, "rate": 100}],
}


def apply_rush_mode(raw: Mapping[str, Any], mode: RushMode) -> Dict[str, Any]:
    """機種タイプに合わせて継続率・移行率を調整した設定を返す（元の設定は変更しない）"""
    settings = dict(raw)
    if mode is RushMode.NORMAL_ONLY:
        settings.update(lt_entry_rate=0, lt_continue_rate=0, upper_payouts=[])
    elif mode is RushMode.LT_ONLY:
        # 通常RUSHは即終了、突入時点で上位モード
        settings.update(continue_rate=0, lt_entry_rate=100)
    return settings


def distribution_total(distribution: Sequence[PayoutEntry]) -> float:
    """振り分け率の合計（%）"""
    return sum(entry.weight_percent for entry in distribution)


def check_payout_tables(config: SimulationConfig, mode: RushMode) -> List[str]:
    """振り分け表の合計が100%になっているか確認し、問題があればメッセージを返す"""
    problems = []
    if mode is not RushMode.LT_ONLY:
        total = distribution_total(config.normal_payout_distribution)
        if abs(total - 100) > WEIGHT_TOLERANCE:
            problems.append(f"通常RUSHの振り分けを100%にしてください（現在: {total:g}%）")
    if mode is not RushMode.NORMAL_ONLY:
        total = distribution_total(config.upper_payout_distribution)
        if abs(total - 100) > WEIGHT_TOLERANCE:
            problems.append(f"上位LTの振り分けを100%にしてください（現在: {total:g}%）")
    return problems


# ---------------------------------------------------------------------------
# シミュレーション本体
# ---------------------------------------------------------------------------

def sample_payout(distribution: Sequence[PayoutEntry], rng) -> float:
    """
    振り分け表から出玉を1つ抽選

    0〜100の乱数を振り、先頭から振り分け率を累積して最初に乱数以上となった行を返す。
    境界値ちょうどの場合は前の行が優先される。合計が100に満たず該当行がない場合は
    最後の行（空なら0）。
    """
    r = rng.random() * 100
    cumulative = 0.0
    for entry in distribution:
        cumulative += entry.weight_percent
        if r <= cumulative:
            return entry.amount
    return distribution[-1].amount if distribution else 0


def _run_rush(config: SimulationConfig, state: RunState, rng) -> None:
    """RUSH継続ループ。state の連チャン数・出玉を更新する"""
    while state.combo_length < MAX_COMBO:
        if state.mode is RushState.UPPER:
            continue_rate = config.upper_continue_rate
            distribution = config.upper_payout_distribution
        else:
            continue_rate = config.normal_continue_rate
            distribution = config.normal_payout_distribution

        if rng.random() * 100 >= continue_rate:
            break

        state.combo_length += 1
        payout = sample_payout(distribution, rng)
        state.session_payout += payout
        state.rush_payouts.append(payout)

        # 通常RUSH中にLT移行抽選
        if state.mode is RushState.NORMAL and rng.random() * 100 < config.upper_entry_rate:
            state.mode = state.mode.escalate()


def run_spins(
    config: SimulationConfig,
    total_spins: int,
    rng=None
) -> Tuple[List[SlumpPoint], List[RushEvent]]:
    """
    1回の稼働を1回転ずつシミュレート

    Args:
        config: 正規化済みスペック
        total_spins: 総回転数
        rng: random() で [0, 1) を返す乱数源（省略時は毎回新しい numpy Generator）

    Returns:
        (スランプ推移, 初当たりごとの記録)
    """
    if rng is None:
        rng = np.random.default_rng()

    consumption = config.consumption_per_spin
    balance = 0.0
    trajectory = [SlumpPoint(spin=0, balance=0)]
    events: List[RushEvent] = []

    for spin in range(1, total_spins + 1):
        balance -= consumption

        if rng.random() >= config.hit_probability:
            continue

        # 初当たり
        balance += config.first_hit_payout
        start_mode = RushState.UPPER if config.is_direct_to_upper else RushState.NORMAL
        state = RunState(mode=start_mode, session_payout=config.first_hit_payout)

        # RUSH判定（直行タイプの場合はここがLT突入判定になる）
        if rng.random() * 100 < config.rush_entry_rate:
            _run_rush(config, state, rng)
            for payout in state.rush_payouts:
                balance += payout

        events.append(RushEvent(
            spin=spin,
            combo_length=state.combo_length,
            first_hit_payout=config.first_hit_payout,
            rush_payouts=state.rush_payouts,
            session_payout=state.session_payout,
            final_mode=state.mode,
        ))
        trajectory.append(SlumpPoint(spin=spin, balance=math.floor(balance * config.exchange_rate)))

    trajectory.append(SlumpPoint(spin=total_spins, balance=math.floor(balance * config.exchange_rate)))
    return trajectory, events


def aggregate_statistics(
    events: Sequence[RushEvent],
    config: SimulationConfig,
    total_spins: int,
    final_balance: int = 0
) -> SimulationStatistics:
    """
    初当たりごとの記録から集計値を求める

    理論期待値は設定値からの解析解ではなく、この稼働で実際に得た平均出玉を
    使って 1回転あたりの期待値を出し、総回転数・換金率を掛けたもの。
    """
    jackpot_count = len(events)
    combos = np.array([e.combo_length for e in events], dtype=int)
    total_payout = sum(e.session_payout for e in events)

    if jackpot_count > 0:
        max_combo = int(combos.max())
        # 小数第1位で四捨五入（0.x5 は切り上げ）
        average_combo = math.floor(float(np.mean(combos)) * 10 + 0.5) / 10
        max_session = max(e.session_payout for e in events)
        average_rush_payout = (total_payout - jackpot_count * config.first_hit_payout) / jackpot_count
        average_session = math.floor(total_payout / jackpot_count)
    else:
        max_combo = 0
        average_combo = 0
        max_session = 0
        average_rush_payout = 0
        average_session = 0

    average_total_per_hit = config.first_hit_payout + average_rush_payout
    expected_value_per_spin = config.hit_probability * average_total_per_hit - config.consumption_per_spin

    return SimulationStatistics(
        jackpot_count=jackpot_count,
        max_combo_length=max_combo,
        average_combo_length=average_combo,
        total_payout_balls=total_payout,
        max_session_payout=max_session,
        theoretical_expected_value=math.floor(expected_value_per_spin * total_spins * config.exchange_rate),
        average_session_payout=average_session,
        final_balance=final_balance,
    )


def simulate(
    config: SimulationConfig,
    total_spins: int = DEFAULT_TOTAL_SPINS,
    rng=None
) -> SimulationResult:
    """正規化済みスペックで1回の稼働を実行し、推移と集計を返す"""
    trajectory, events = run_spins(config, total_spins, rng)
    statistics = aggregate_statistics(events, config, total_spins, trajectory[-1].balance)
    return SimulationResult(trajectory=trajectory, statistics=statistics, events=events)


def run_slump_simulation(
    settings: Mapping[str, Any],
    total_spins: Any = DEFAULT_TOTAL_SPINS,
    rng=None
) -> SimulationResult:
    """生の設定値からシミュレーションを実行"""
    config = normalize_settings(settings)
    return simulate(config, normalize_spin_count(total_spins), rng)


def estimate_border(statistics: SimulationStatistics, config: SimulationConfig) -> float:
    """
    稼働結果から推定した等価ボーダー（1kあたり回転数）

    初当たり1回あたりの平均出玉で消費玉を取り戻せる回転数。出玉がなければ inf。
    """
    if statistics.jackpot_count == 0 or statistics.total_payout_balls <= 0:
        return math.inf
    average_total_per_hit = statistics.total_payout_balls / statistics.jackpot_count
    return BALLS_PER_1K / (config.hit_probability * average_total_per_hit)


# ---------------------------------------------------------------------------
# 表示
# ---------------------------------------------------------------------------

def print_statistics(
    result: SimulationResult,
    config: SimulationConfig,
    total_spins: int,
    mode: RushMode = RushMode.NORMAL_WITH_LT
):
    """シミュレーション結果の統計を表示"""
    stats = result.statistics
    border = estimate_border(stats, config)

    print(f"\n【{RUSH_MODE_LABELS[mode]}】 1/{1 / config.hit_probability:g} / {total_spins:,}回転")
    print(f"  初当たり回数: {stats.jackpot_count}回")
    print(f"  最大連チャン: {stats.max_combo_length}連")
    print(f"  平均連チャン: {stats.average_combo_length:.1f}連")
    print(f"  総獲得出玉:   {stats.total_payout_balls:,.0f}発")
    print(f"  最大獲得玉:   {stats.max_session_payout:,.0f}発")
    print(f"  平均獲得玉:   {stats.average_session_payout:,}発")
    print(f"\n  収支結果:     {stats.final_balance:+,}円")
    print(f"  理論期待値:   {stats.theoretical_expected_value:+,}円")
    if math.isinf(border):
        print("  推定ボーダー: -（出玉なし）")
    else:
        over = (config.ball_border / border - 1) * 100
        print(f"  推定ボーダー: {border:.1f}回転 （1k{config.ball_border:g}回転: ボーダー{over:+.1f}%）")


def print_hit_history(result: SimulationResult):
    """当たり履歴を表示"""
    print(f"\n{'='*50}")
    print("【当たり履歴】")
    print(f"{'='*50}")

    if not result.events:
        print("  当たりなし")
        return

    for i, event in enumerate(result.events, 1):
        print(f"\n  ▶ 当たり{i}: {event.spin}回転目")
        print(f"    初当たり: {event.first_hit_payout:,.0f}発", end="")
        if event.combo_length > 1:
            label = "LT" if event.final_mode is RushState.UPPER else "RUSH"
            print(f" → {label}突入 → {event.combo_length}連")
            for k, payout in enumerate(event.rush_payouts, 2):
                print(f"      {k}連目: {payout:,.0f}発")
        else:
            print(" → 単発")
        print(f"    → 合計出玉: {event.session_payout:,.0f}発")


def _step_values(trajectory: Sequence[SlumpPoint], spins: np.ndarray) -> np.ndarray:
    """各回転数時点の収支（直前の記録点の値）"""
    recorded = np.array([p.spin for p in trajectory])
    balances = np.array([p.balance for p in trajectory])
    index = np.searchsorted(recorded, spins, side="right") - 1
    return balances[np.clip(index, 0, len(balances) - 1)]


def print_slump_graph(result: SimulationResult, width: int = 60, height: int = 15):
    """スランプグラフをテキストで表示"""
    trajectory = result.trajectory
    last_spin = trajectory[-1].spin
    spins = np.linspace(0, last_spin, width)
    values = _step_values(trajectory, spins)

    top = max(int(values.max()), 0)
    bottom = min(int(values.min()), 0)
    if top == bottom:
        top = bottom + 1

    print(f"\n  差玉収支スランプグラフ（0〜{last_spin:,}回転）")
    for level in np.linspace(top, bottom, height):
        cells = []
        for value in values:
            if min(value, 0) <= level <= max(value, 0):
                cells.append("█")
            else:
                cells.append("·")
        print(f"  {level:>+10,.0f}円 |{''.join(cells)}")
    print(f"  {'':>11}  +{'-' * width}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_payout(text: str) -> Tuple[float, float]:
    """'出玉:振り分け率' 形式（例: 1500:100）を解釈"""
    try:
        balls, rate = text.split(":")
        return float(balls), float(rate)
    except ValueError:
        raise argparse.ArgumentTypeError(f"振り分けは 出玉:率 の形式で指定してください: {text!r}")


def main(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(description="パチンコ 収支スランプシミュレーター")
    parser.add_argument("--mode", choices=[m.value for m in RushMode],
                        default=RushMode.NORMAL_WITH_LT.value, help="機種タイプ")
    parser.add_argument("--odds", type=float, default=DEFAULT_SETTINGS["hit_odds"],
                        help="初当たり確率（1/x の x）")
    parser.add_argument("--rush", type=float, default=DEFAULT_SETTINGS["rush_rate"],
                        help="RUSH突入率（%%）")
    parser.add_argument("--continue", dest="continue_rate", type=float,
                        default=DEFAULT_SETTINGS["continue_rate"], help="通常RUSH継続率（%%）")
    parser.add_argument("--lt-entry", type=float, default=DEFAULT_SETTINGS["lt_entry_rate"],
                        help="LT移行率（%%）")
    parser.add_argument("--lt-continue", type=float, default=DEFAULT_SETTINGS["lt_continue_rate"],
                        help="上位継続率（%%）")
    parser.add_argument("--first-bonus", type=float, default=DEFAULT_SETTINGS["first_bonus"],
                        help="初当たり出玉（発）")
    parser.add_argument("--border", type=float, default=DEFAULT_SETTINGS["border"],
                        help="千円あたり回転数")
    parser.add_argument("--exchange", type=float, default=DEFAULT_SETTINGS["exchange_rate"],
                        help="換金率（円/玉）")
    parser.add_argument("--spins", type=int, default=5000,
                        help="総回転数")
    parser.add_argument("--payout", type=parse_payout, action="append",
                        help="通常RUSH振り分け 出玉:率（複数指定可）")
    parser.add_argument("--upper-payout", type=parse_payout, action="append",
                        help="上位LT振り分け 出玉:率（複数指定可）")
    parser.add_argument("--seed", type=int, default=None,
                        help="乱数シード")
    parser.add_argument("--detail", "-d", action="store_true",
                        help="当たり履歴を表示")
    parser.add_argument("--graph", action="store_true",
                        help="スランプグラフを表示")

    args = parser.parse_args(argv)
    if args.spins <= 0:
        parser.error(f"総回転数は1以上を指定してください: {args.spins}")
    mode = RushMode(args.mode)

    payouts = args.payout or [(1500, 100)]
    upper_payouts = args.upper_payout or [(1500, 100)]
    raw = apply_rush_mode({
        "hit_odds": args.odds,
        "rush_rate": args.rush,
        "continue_rate": args.continue_rate,
        "lt_entry_rate": args.lt_entry,
        "lt_continue_rate": args.lt_continue,
        "first_bonus": args.first_bonus,
        "border": args.border,
        "exchange_rate": args.exchange,
        "payouts": [{"balls": b, "rate": r} for b, r in payouts],
        "upper_payouts": [{"balls": b, "rate": r} for b, r in upper_payouts],
    }, mode)

    config = normalize_settings(raw)
    problems = check_payout_tables(config, mode)
    if problems:
        parser.error(" / ".join(problems))

    total_spins = normalize_spin_count(args.spins)
    result = simulate(config, total_spins, np.random.default_rng(args.seed))

    print_statistics(result, config, total_spins, mode)
    if args.detail:
        print_hit_history(result)
    if args.graph:
        print_slump_graph(result)


if __name__ == "__main__":
    main()
