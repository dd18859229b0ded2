"""
AI-based market review module.

Integrates with OpenAI-compatible providers to extract market data from
uploaded screenshots/documents and to write commentary on a daily record.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import httpx

from ..models import (
    AIExtraction,
    AIProviderConfig,
    AIProviderTestResponse,
    CommentaryMode,
    DragonStatus,
    DRAGON_STATUSES,
    PersistentSector,
    SentimentRecord,
)
from ..utils.text_utils import TextProcessor
from .attachments import UploadedFile
from .sector_persistence import describe_persistence
from .task_slot import AITaskError

logger = logging.getLogger(__name__)

CYCLE_TAG = "周期定性"
DATA_BLOCK = "DATA"


@dataclass(frozen=True, slots=True)
class CommentaryResult:
    text: str
    cycle: str | None = None
    dragon_status: DragonStatus | None = None


class AIAnalyzer:
    """
    Calls the configured AI provider on behalf of the review session.
    """

    def __init__(
        self,
        provider: AIProviderConfig | None,
        api_key_resolver: Callable[[AIProviderConfig], str],
        timeout_sec: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize AI analyzer.

        Args:
            provider: AI provider configuration
            api_key_resolver: Function to resolve API keys
            timeout_sec: Read timeout for one provider call
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.provider = provider
        self._resolve_api_key = api_key_resolver
        self.timeout_sec = timeout_sec
        self._transport = transport

    # Autofill
    def autofill_from_files(self, record: SentimentRecord, files: Sequence[UploadedFile]) -> AIExtraction:
        """
        Extract market data from uploaded files.

        Raises:
            AITaskError: provider not ready, transport failure or unusable reply
        """
        if not files:
            raise AITaskError("NO_ATTACHMENTS", "请先上传数据信源。")
        content: list[dict[str, Any]] = [{"type": "text", "text": self.build_autofill_prompt(record.date)}]
        content.extend(self._build_file_parts(files))
        reply = self._call_chat(
            [{"role": "user", "content": content}],
            json_mode=True,
            temperature=0.1,
        )
        payload = TextProcessor.parse_json_object(reply)
        if payload is None:
            logger.error(f"Autofill reply is not a JSON object: {TextProcessor.truncate(reply, 200)}")
            raise AITaskError("AI_BAD_JSON", "AI 返回内容无法解析为 JSON")
        return AIExtraction.from_payload(payload)

    @staticmethod
    def build_autofill_prompt(date: str) -> str:
        return (
            f"你是一个精通A股短线博弈的数据专家。现在是 {date}。\n"
            "请【务必以我上传的文件内容作为唯一真相】进行解析填充。\n\n"
            "解析要求：\n"
            "1. 提取各指数精确涨跌幅、成交额及增减。\n"
            "2. 提取涨停数、跌停数、炸板率。\n"
            "3. 识别前三主线板块及其详细数据。\n"
            "4. 识别连板梯队（1-5B及以上）的具体标的、家数和晋级率。最高统计到5B+。\n"
            "5. 锁定核心总龙头和趋势中军。\n\n"
            "只返回 JSON，格式：\n"
            "{\n"
            '  "indices": {"沪": 涨跌%, "深": %, "创": %, "科": %, "300": %, "1000": %, "2000": %, "微盘": %},\n'
            '  "totalVol": 数值, "volDelta": 数值,\n'
            '  "sentiment": {"limitUp": 数量, "limitDown": 数量, "brokenRate": %},\n'
            '  "sectors": [{"name": "板块名", "gain": %, "limitUps": 数量, "volume": 亿}, ...],\n'
            '  "dragon": "总龙头名称", "midArmy": "趋势中军名称",\n'
            '  "ladder": {"5": {"stock": "股名", "count": 数量, "promoRate": %}, ...}\n'
            "}"
        )

    @staticmethod
    def _build_file_parts(files: Sequence[UploadedFile]) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        for item in files:
            if item.mime_type.startswith("image/"):
                parts.append({"type": "image_url", "image_url": {"url": item.data_uri()}})
            elif item.mime_type.startswith("text/") or item.mime_type in ("application/json", "text/csv"):
                parts.append({"type": "text", "text": f"[文件 {item.name}]\n{item.decoded_text()}"})
            else:
                parts.append({"type": "file", "file": {"filename": item.name, "file_data": item.data_uri()}})
        return parts

    # Commentary
    def generate_commentary(
        self,
        record: SentimentRecord,
        persistent: Sequence[PersistentSector],
        *,
        mode: CommentaryMode = "full",
        name: str = "",
        role: str = "",
        lookback: int = 5,
    ) -> CommentaryResult:
        """
        Ask the provider for a prose review of the record.

        Raises:
            AITaskError: provider not ready or the call failed
        """
        prompt = self.build_commentary_prompt(record, persistent, mode=mode, name=name, role=role, lookback=lookback)
        reply = self._call_chat([{"role": "user", "content": prompt}], json_mode=False, temperature=0.7)
        return self.parse_commentary(reply)

    @staticmethod
    def build_commentary_prompt(
        record: SentimentRecord,
        persistent: Sequence[PersistentSector],
        *,
        mode: CommentaryMode = "full",
        name: str = "",
        role: str = "",
        lookback: int = 5,
    ) -> str:
        top = record.ladder.get("5")
        top_stock = top.stock if top and top.stock else "无"
        top_promo = top.promo_rate if top else 0
        sectors = "、".join(s.name.strip() for s in record.top_sectors if s.name.strip()) or "未填写"
        context = (
            f"[实时数据]：成交 {record.total_volume}T，涨停 {record.limit_up_total}/跌停 {record.limit_down_total}，"
            f"炸板率 {record.broken_rate}%，昨日涨停溢价 {record.yesterday_gain}%。\n"
            f"[市场核心]：总龙[{record.dragon or '无'}]（{record.dragon_status}），中军[{record.mid_army or '无'}]。\n"
            f"[主线板块]：{sectors}。\n"
            f"[梯队状态]：最高标[{top_stock}]，晋级率[{top_promo}%]。\n\n"
            f"{describe_persistence(persistent, lookback)}\n"
        )

        if mode == "optimization":
            watch = "\n".join(
                f"- {item.name}（{item.concept or '无逻辑'}）：{item.plan or '无计划'}"
                for item in record.watchlist
                if item.name.strip()
            ) or "- 暂无备选"
            task = (
                "[优化要求]：\n"
                f"1. 审视今日复盘反思：{record.reflection or '无'}。\n"
                f"2. 逐一优化以下备选计划，指出买点、止损与放弃条件：\n{watch}\n"
                f"3. 结合信仰评分 {record.score}/100 给出明日仓位上限。\n"
            )
            head = f"作为资深游资指挥官，请针对 {record.date} 的交易计划进行策略优化。"
        elif mode == "stock":
            target = name.strip() or record.dragon or "总龙头"
            task = (
                "[个股研判]：\n"
                f"1. 标的：{target}，角色：{role.strip() or '未指定'}。\n"
                "2. 判断其在当前情绪周期中的地位与分歧承接能力。\n"
                "3. 给出明日竞价/盘中的应对预案。\n"
            )
            head = f"作为资深游资指挥官，请针对 {record.date} 盘面中的 {target} 进行深度研判。"
        elif mode == "sentiment":
            task = (
                "[情绪研判]：\n"
                "1. 依据涨跌停家数、炸板率、梯队晋级率定性当前情绪周期位置。\n"
                f"2. 当前信仰评分 {record.score}/100（{record.stage}），评估是否高估或低估。\n"
                "3. 指出情绪拐点的观察信号。\n"
            )
            head = f"作为资深游资指挥官，请针对 {record.date} 的市场情绪进行专项研判。"
        else:
            task = (
                "[研判要求]：\n"
                "1. 必须针对上述“持续性板块”进行深度定性：它们是真主线还是未来的过渡？\n"
                f"2. 结合今日信仰评分 {record.score}/100，判断明日盘面是加速还是分歧。\n"
                "3. 给出实战级别的买入/持仓/卖出建议。\n"
            )
            head = f"作为资深游资指挥官，请针对 {record.date} 盘面进行深度信仰研判。"

        footer = (
            "\n[输出格式]：\n"
            f"最后单独一行写【{CYCLE_TAG}：冰点/修复/发酵/高潮/退潮 之一】。\n"
            f"如判断总龙头状态，附上 [{DATA_BLOCK}]{{\"dragonStatus\": \"accelerate|divergence|broken|revive\"}}[/{DATA_BLOCK}]。"
        )
        return f"{head}\n\n{context}\n{task}{footer}"

    @staticmethod
    def parse_commentary(reply: str) -> CommentaryResult:
        cycle = TextProcessor.extract_bracket_tag(reply, CYCLE_TAG)
        dragon_status: DragonStatus | None = None
        block = TextProcessor.extract_delimited_block(reply, DATA_BLOCK)
        if block:
            payload = TextProcessor.parse_json_object(block) or {}
            status = payload.get("dragonStatus", payload.get("dragon_status"))
            if status in DRAGON_STATUSES:
                dragon_status = status
        text = TextProcessor.remove_delimited_block(reply, DATA_BLOCK)
        return CommentaryResult(text=text, cycle=cycle, dragon_status=dragon_status)

    # Transport
    def is_provider_ready(self) -> bool:
        """Check if provider is properly configured."""
        if self.provider is None:
            return False
        if not self.provider.base_url.strip():
            return False
        if not self.provider.model.strip():
            return False
        return bool(self._resolve_api_key(self.provider))

    def _call_chat(self, messages: list[dict[str, Any]], *, json_mode: bool, temperature: float) -> str:
        """
        Call the provider's chat/completions endpoint and return the text content.

        Raises:
            AITaskError: with one of AI_PROVIDER_NOT_READY, AI_TIMEOUT,
                AI_HTTP_ERROR, AI_PROVIDER_ERROR, AI_EMPTY_CONTENT
        """
        provider = self.provider
        if provider is None or not provider.base_url.strip() or not provider.model.strip():
            raise AITaskError("AI_PROVIDER_NOT_READY", "未配置可用的 AI Provider")
        api_key = self._resolve_api_key(provider)
        if not api_key:
            raise AITaskError("AI_KEY_MISSING", "缺少 API 凭证，请填写 api_key 或 api_key_path")

        body: dict[str, Any] = {
            "model": provider.model,
            "temperature": temperature,
            "messages": messages,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        try:
            timeout = httpx.Timeout(float(self.timeout_sec), connect=10.0)
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(
                    f"{provider.base_url.rstrip('/')}/chat/completions",
                    headers={"Authorization": f"Bearer {api_key}"},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"AI API timeout ({provider.id}): {e}")
            raise AITaskError("AI_TIMEOUT", f"AI 请求超时（{self.timeout_sec}s）") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"AI API HTTP error: {e.response.status_code} - {e.response.text[:300]}")
            raise AITaskError("AI_HTTP_ERROR", f"AI 服务返回 {e.response.status_code}") from e
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            logger.error(f"AI API call failed: {e}")
            raise AITaskError("AI_PROVIDER_ERROR", f"AI 请求失败: {type(e).__name__}") from e

        content = self._extract_content(data)
        if not content:
            raise AITaskError("AI_EMPTY_CONTENT", "AI 返回为空")
        return content

    @staticmethod
    def _extract_content(data: Any) -> str:
        if not isinstance(data, dict):
            logger.warning(f"Unexpected response format: {data!r}")
            return ""
        if "choices" in data:
            # OpenAI format
            choices = data.get("choices") or [{}]
            message = choices[0].get("message", {}) if isinstance(choices[0], dict) else {}
            content = message.get("content", "")
            if isinstance(content, list):
                # Some providers return content parts
                content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))
            return str(content or "").strip()
        if "output" in data:
            # Some providers use "output"
            return str(data["output"] or "").strip()
        logger.warning(f"Unexpected response format: {list(data)}")
        return ""


def probe_provider(
    provider: AIProviderConfig,
    api_key: str,
    timeout_sec: int = 10,
    transport: httpx.BaseTransport | None = None,
) -> AIProviderTestResponse:
    """Send a tiny completion to check connectivity and credentials."""
    if not provider.base_url.strip() or not provider.model.strip():
        return AIProviderTestResponse(
            ok=False,
            provider_id=provider.id,
            latency_ms=0,
            message="缺少 base_url 或 model",
            error_code="INVALID_PROVIDER_CONFIG",
        )
    if not api_key:
        return AIProviderTestResponse(
            ok=False,
            provider_id=provider.id,
            latency_ms=0,
            message="缺少 API 凭证，请填写 api_key 或 api_key_path",
            error_code="AI_KEY_MISSING",
        )

    analyzer = AIAnalyzer(provider, lambda _: api_key, timeout_sec=timeout_sec, transport=transport)
    started = time.perf_counter()
    try:
        analyzer._call_chat(
            [
                {"role": "system", "content": "You are a connectivity probe."},
                {"role": "user", "content": "Reply only OK"},
            ],
            json_mode=False,
            temperature=0.0,
        )
    except AITaskError as exc:
        latency_ms = int((time.perf_counter() - started) * 1000)
        return AIProviderTestResponse(
            ok=False,
            provider_id=provider.id,
            latency_ms=latency_ms,
            message=exc.message,
            error_code=exc.code,
        )
    latency_ms = int((time.perf_counter() - started) * 1000)
    return AIProviderTestResponse(
        ok=True,
        provider_id=provider.id,
        latency_ms=latency_ms,
        message=f"连接成功，耗时 {latency_ms}ms",
        error_code=None,
    )


def create_ai_analyzer(
    provider_getter: Callable[[], AIProviderConfig | None],
    api_key_resolver: Callable[[AIProviderConfig], str],
    timeout_sec: float = 60.0,
    transport: httpx.BaseTransport | None = None,
) -> AIAnalyzer:
    """
    Factory function to create AIAnalyzer.

    Args:
        provider_getter: Function to get active AI provider config
        api_key_resolver: Function to resolve API keys
        timeout_sec: Read timeout per call
        transport: Optional httpx transport override

    Returns:
        AIAnalyzer instance (provider may be None; calls then fail with AI_PROVIDER_NOT_READY)
    """
    return AIAnalyzer(
        provider=provider_getter(),
        api_key_resolver=api_key_resolver,
        timeout_sec=timeout_sec,
        transport=transport,
    )
