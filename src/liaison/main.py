"""Liaison CLI 入口：五幕互动叙事的自动驾驶运行与策略表检查。"""

from __future__ import annotations

import argparse
import logging
import os
import sys

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from liaison.agents.dialogue import LLMDialogueGenerator, ScriptedDialogueGenerator
from liaison.agents.safety import PatternSafetyGuard
from liaison.config.settings import LiaisonConfig, ModelConfig, load_config
from liaison.engine.evaluation import EvaluationEngine
from liaison.engine.narrative import EpisodeHandle, NarrativeRuntime
from liaison.engine.telemetry import TelemetryHub
from liaison.errors import LiaisonError, PolicyError
from liaison.export import (
    episode_record,
    scene_records,
    snapshot_records,
    telemetry_records,
    turn_records,
)
from liaison.graph.session_graph import choose_ending, run_autopilot
from liaison.models.console import ConsoleState
from liaison.models.episode import EpisodeSeed
from liaison.models.policy import PolicyTables
from liaison.models.relationship import DIMENSIONS
from liaison.models.telemetry import TelemetryEvent
from liaison.output.manager import OutputManager
from liaison.policy import load_policy

console = Console()
logger = logging.getLogger("liaison")

DEMO_CHARACTERS = ["林夏", "周屿", "沈眠"]


def _init_model(model_config: ModelConfig):
    """根据配置初始化 LLM。"""
    provider = model_config.provider.lower()

    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=model_config.model_name,
            temperature=model_config.temperature,
            max_output_tokens=model_config.max_tokens,
        )
    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        kwargs: dict = {
            "model": model_config.model_name,
            "temperature": model_config.temperature,
            "max_tokens": model_config.max_tokens,
        }
        api_key = os.environ.get("OPENAI_API_KEY") or model_config.api_key
        if api_key:
            kwargs["api_key"] = api_key
        return ChatOpenAI(**kwargs)
    else:
        # 通过 langchain 的通用接口
        from langchain.chat_models import init_chat_model

        return init_chat_model(
            f"{provider}:{model_config.model_name}",
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
        )


def _load_seed(path: str | None) -> EpisodeSeed | None:
    if not path:
        return None
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return EpisodeSeed.model_validate(data)


def _resolve_policy(args: argparse.Namespace, config: LiaisonConfig) -> PolicyTables:
    path = getattr(args, "policy", None) or config.policy_path or None
    try:
        return load_policy(path)
    except PolicyError as e:
        console.print(f"[bold red]策略表无效:[/bold red] {e}")
        sys.exit(1)


# ────────────────────────────────────────────
# run
# ────────────────────────────────────────────


def cmd_run(args: argparse.Namespace) -> None:
    """自动驾驶一个剧集并导出记录。"""
    config = load_config(args.config)
    policy = _resolve_policy(args, config)
    seed = _load_seed(args.seed)

    characters = args.characters or (seed.characters if seed else None) or DEMO_CHARACTERS
    vibe = args.vibe or (seed.vibe if seed else "") or "初夏的海边"
    setting = args.setting or (seed.setting if seed else "") or "夜晚的防波堤"

    if args.dry_run:
        console.print("[dim]离线模式：使用脚本对白，不调用模型[/dim]")
        safety = PatternSafetyGuard()
        generator = ScriptedDialogueGenerator()
    else:
        safety_model = _init_model(config.safety_model) if config.safety_model else None
        safety = PatternSafetyGuard(safety_model)
        generator = LLMDialogueGenerator(
            _init_model(config.dialogue_model),
            safety=safety,
            fallback_text=config.runtime.fallback_line_text,
        )

    events: list[TelemetryEvent] = []
    hub = TelemetryHub([events.append])
    runtime = NarrativeRuntime(generator, safety, policy, config.runtime, hub)
    evaluator = EvaluationEngine(policy, config.runtime, safety=safety)

    try:
        handle = runtime.start_episode(characters, vibe, setting, seed=seed)
    except LiaisonError as e:
        console.print(f"[bold red]无法开始剧集:[/bold red] {e}")
        sys.exit(1)

    console.print(
        Panel(
            f"角色: {'、'.join(characters)}\n基调: {vibe}\n场所: {setting}\n"
            f"回合预算: {args.exchanges}",
            title=f"剧集 {handle.episode_id[:8]}",
        )
    )

    result: dict = {}
    failed = False
    with Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
    ) as progress:
        progress.add_task("运行中...", total=None)
        try:
            result = run_autopilot(
                runtime,
                evaluator,
                handle,
                max_exchanges=args.exchanges,
                resolution_exchanges=args.resolution,
            )
        except LiaisonError as e:
            failed = True
            logger.error("剧集中断: %s", e)

    console_state = runtime.get_state(handle)
    ending = None if failed else choose_ending(handle)
    runtime.end_episode(handle, ending)

    _print_dialogue(handle)
    _print_relationships(console_state)
    _print_console_state(console_state)
    decisions = result.get("decisions", [])
    accepted = sum(1 for d in decisions if d.accepted)
    console.print(
        f"\n幕路径: {' → '.join(str(int(a)) for a in handle.state.episode.act_path)}"
        f"    结局: {ending.value if ending else '中断'}"
        f"    评估推荐: {len(decisions)} 次（接受 {accepted} 次）"
    )

    output_mgr = OutputManager(args.output or config.output_dir, handle.episode_id)
    output_mgr.save_records("episode", episode_record(handle))
    output_mgr.save_records("scenes", scene_records(handle))
    output_mgr.save_records("turns", turn_records(handle))
    output_mgr.save_records("evaluations", snapshot_records(evaluator.snapshots()))
    output_mgr.save_records("telemetry", telemetry_records(events))
    output_mgr.update_metadata(
        ending=ending.value if ending else None,
        exchanges=result.get("exchanges_run", 0),
        dry_run=args.dry_run,
        evaluator=evaluator.export_metrics(),
    )
    console.print(f"[green]导出完成:[/green] {output_mgr.root}")
    if failed:
        sys.exit(1)


def _print_dialogue(handle: EpisodeHandle) -> None:
    state = handle.state
    acts = {scene.id: int(scene.act) for scene in state.episode.scenes}
    table = Table(title="对白", show_lines=False)
    table.add_column("幕", style="cyan", width=4)
    table.add_column("角色", style="yellow")
    table.add_column("台词", style="white")
    table.add_column("Δ", style="magenta", justify="right")
    for turn in handle.turns:
        line = turn.line
        text = f"[dim]{line.text}[/dim]" if line.is_fallback else line.text
        table.add_row(
            str(acts.get(turn.scene_id, "?")),
            line.speaker,
            text,
            f"{line.deltas.total_magnitude():.2f}",
        )
    console.print(table)


def _print_relationships(state: ConsoleState) -> None:
    table = Table(title="关系图", show_lines=True)
    table.add_column("角色对", style="cyan")
    for dim in DIMENSIONS:
        table.add_column(dim, justify="right")
    for key, pair in state.summary.relationships.items():
        table.add_row(key, *(f"{getattr(pair, dim):.2f}" for dim in DIMENSIONS))
    console.print(table)


def _print_console_state(state: ConsoleState) -> None:
    table = Table(title="状态", show_lines=True)
    table.add_column("项目", style="cyan", width=14)
    table.add_column("内容", style="white")

    badges = ", ".join(f"{b.type.value}({b.level.value})" for b in state.badges)
    cadence = state.cadence
    cooldowns = ", ".join(f"{t.value}:{n}" for t, n in cadence.cooldowns.items())
    table.add_row("徽章", badges or "-")
    table.add_row("停滞计数", str(state.plateau_counter))
    table.add_row("场景脆弱度", f"{state.scene_fragility:.2f}")
    table.add_row(
        "节奏",
        f"本场景重干预 {cadence.major_budget_used}/{cadence.major_budget_max}，"
        f"距下次重干预 {cadence.exchanges_until_major} 回合，"
        f"恢复窗口 {'开启' if cadence.recovery_active else '关闭'}",
    )
    table.add_row("冷却", cooldowns or "-")
    console.print(table)


# ────────────────────────────────────────────
# policy
# ────────────────────────────────────────────


def cmd_policy(args: argparse.Namespace) -> None:
    """校验并打印策略表。"""
    policy = _resolve_policy(args, LiaisonConfig())

    gates = Table(title="Act Gates", show_lines=True)
    gates.add_column("幕", style="cyan", width=4)
    gates.add_column("λ 基数", justify="right")
    gates.add_column("允许", style="green")
    gates.add_column("禁止", style="red")
    gates.add_column("说明")
    for gate in policy.act_gates:
        gates.add_row(
            str(int(gate.act)),
            f"{gate.coherence_weight:.1f}",
            ", ".join(t.value for t in gate.allowed) or "-",
            ", ".join(t.value for t in gate.blocked) or "-",
            gate.description,
        )
    console.print(gates)

    checkpoints = Table(title="检查点", show_lines=True)
    checkpoints.add_column("推进", style="cyan")
    checkpoints.add_column("类型")
    checkpoints.add_column("关系下限")
    checkpoints.add_column("证据")
    for rule in policy.checkpoints:
        evidence = []
        if rule.evidence.open_callback:
            evidence.append("未回收回调")
        if rule.evidence.keywords:
            evidence.append("关键词: " + "/".join(rule.evidence.keywords))
        evidence.extend(f"Δ{dim} > {v}" for dim, v in rule.evidence.delta_above.items())
        checkpoints.add_row(
            f"{int(rule.from_act)} → {int(rule.to_act)}",
            rule.type.value,
            ", ".join(f"{dim} ≥ {v}" for dim, v in rule.pair_at_least.items()) or "-",
            "\n".join(evidence) or "-",
        )
    console.print(checkpoints)

    catalog = Table(title="干预目录", show_lines=True)
    catalog.add_column("类型", style="cyan")
    catalog.add_column("强度")
    catalog.add_column("限定幕")
    catalog.add_column("冷却", justify="right")
    catalog.add_column("漂移风险", justify="right")
    for d in policy.nudge_catalog:
        catalog.add_row(
            d.type.value,
            d.intensity.value,
            ", ".join(str(int(a)) for a in d.act_restrictions) or "全部",
            str(d.cooldown_exchanges),
            f"{d.persona_drift_risk:.2f}",
        )
    console.print(catalog)
    console.print("[green]策略表校验通过[/green]")


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="liaison",
        description="Liaison - 五幕结构的多角色互动叙事运行时",
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    run_parser = subparsers.add_parser("run", help="自动驾驶运行一个剧集")
    run_parser.add_argument("seed", nargs="?", default=None, help="开局种子 YAML（可选）")
    run_parser.add_argument("--characters", nargs="+", default=None, help="角色列表，前两位为初始聚光灯")
    run_parser.add_argument("--vibe", default="", help="基调")
    run_parser.add_argument("--setting", default="", help="场所")
    run_parser.add_argument("--exchanges", type=int, default=24, help="回合预算（默认: 24）")
    run_parser.add_argument(
        "--resolution", type=int, default=2, help="进入第五幕后再运行的回合数（默认: 2）"
    )
    run_parser.add_argument("--config", default=None, help="配置 YAML 路径")
    run_parser.add_argument("--policy", default=None, help="自定义策略表 YAML 路径")
    run_parser.add_argument("--output", "-o", default=None, help="输出目录（默认取配置，output）")
    run_parser.add_argument(
        "--dry-run", action="store_true", help="离线模式：使用脚本对白，不调用模型"
    )
    run_parser.add_argument("--verbose", "-v", action="store_true", help="详细日志输出")

    policy_parser = subparsers.add_parser("policy", help="校验并打印策略表")
    policy_parser.add_argument("--policy", default=None, help="自定义策略表 YAML 路径")
    policy_parser.add_argument("--verbose", "-v", action="store_true", help="详细日志输出")

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    if args.command == "run":
        cmd_run(args)
    elif args.command == "policy":
        cmd_policy(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
