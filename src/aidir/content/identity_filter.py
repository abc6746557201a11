"""Identity-match filter: does a piece of text describe *this* person?

Same-name collisions (an actor, a footballer, a historical figure sharing
the researcher's name) are the dominant failure mode of name-based
fetching. An item is accepted only when it carries name evidence plus a
corroborating signal, and is rejected when it carries strong signals of
a different, well-known profession.

Decision order:
  1. Name evidence: full English name, name parts (all parts, or surname
     plus a given name), Chinese name (surname + given name), aliases.
  2. Organization evidence, expanded through ORG_ALIASES.
  3. Negative domains (entertainment, sports, politics, historical,
     agriculture, medicine). With any negative signal: name AND
     organization are required, crossover domains additionally need an
     AI keyword, other domains reject.
  4. Without negative signals: name plus organization, occupation term
     or AI keyword.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

from aidir.models import PersonIdentity
from aidir.text import fold, fold_compact, has_han, is_ascii_name

ORG_ALIASES: dict[str, list[str]] = {
    "openai": ["open ai", "open.ai", "openai inc", "openai, inc"],
    "google": ["google ai", "google deepmind", "deepmind", "alphabet", "google brain", "google research"],
    "meta": ["meta ai", "facebook", "facebook ai", "meta platforms", "fair"],
    "microsoft": ["microsoft research", "microsoft ai", "msft"],
    "anthropic": ["anthropic ai", "anthropic pbc"],
    "nvidia": ["nvidia ai", "nvidia research"],
    "apple": ["apple ai", "apple ml"],
    "amazon": ["amazon ai", "aws ai", "amazon web services"],
    "xai": ["x.ai", "x ai"],
    "tesla": ["tesla ai", "tesla autopilot"],
    "baidu": ["baidu ai", "百度", "百度研究院"],
    "alibaba": ["alibaba ai", "阿里巴巴", "阿里", "达摩院"],
    "tencent": ["tencent ai", "腾讯", "腾讯ai"],
    "bytedance": ["字节跳动", "字节", "tiktok"],
    "huawei": ["华为", "huawei ai", "华为诺亚方舟"],
    "stanford": ["stanford university", "stanford ai", "斯坦福", "stanford hai"],
    "mit": ["massachusetts institute of technology", "mit ai", "麻省理工"],
    "berkeley": ["uc berkeley", "berkeley ai", "伯克利", "ucb"],
    "cmu": ["carnegie mellon", "carnegie mellon university", "卡内基梅隆"],
    "tsinghua": ["清华", "清华大学", "tsinghua university"],
    "peking": ["北大", "北京大学", "peking university", "pku"],
}

AI_KEYWORDS: tuple[str, ...] = (
    "ai", "artificial intelligence", "人工智能",
    "machine learning", "机器学习",
    "deep learning", "深度学习",
    "llm", "large language model", "大语言模型", "大模型",
    "gpt", "transformer", "neural network", "神经网络",
    "nlp", "computer vision", "计算机视觉",
    "ceo", "cto", "founder", "co-founder", "chief",
    "researcher", "研究员", "科学家", "scientist",
    "professor", "教授", "phd", "博士",
    "startup", "创业", "venture",
    "tech", "technology", "科技",
)

NEGATIVE_SIGNALS: dict[str, tuple[str, ...]] = {
    "entertainment": (
        "actor", "actress", "演员", "明星", "celebrity", "singer", "歌手",
        "musician", "音乐家", "band", "乐队", "movie star", "影星",
        "tv show", "电视剧", "综艺",
        "grammy", "oscar", "奥斯卡", "emmy", "golden globe",
    ),
    "sports": (
        "athlete", "运动员", "coach", "教练", "球队",
        "football", "足球", "basketball", "篮球", "soccer", "baseball",
        "nba", "nfl", "mlb", "fifa", "olympics", "奥运",
        "championship", "冠军", "联赛",
    ),
    "politics": (
        "senator", "参议员", "congressman", "国会议员", "governor", "州长",
        "mayor", "市长", "parliament", "议会", "election", "选举",
        "campaign", "竞选", "democrat", "republican", "政党",
    ),
    "historical": (
        "emperor", "皇帝", "pharaoh", "法老",
        "dynasty", "王朝", "ancient ruler", "古代统治者", "公元前",
    ),
    "agriculture": (
        "botanist", "植物学家", "agricultural", "农业", "farming", "种植",
        "crop", "作物", "livestock", "畜牧", "botanical garden", "植物园",
    ),
    "medicine": (
        "surgeon", "外科医生", "physician", "内科医生", "nurse", "护士",
        "hospital", "医院", "clinic", "诊所", "patient", "患者",
        "surgery", "手术", "treatment", "治疗",
    ),
}

# Domains that legitimately overlap with AI work (medical AI, agri-tech)
CROSSOVER_DOMAINS = frozenset({"medicine", "agriculture"})


@lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    """Word-bounded pattern for Latin keywords; plain substring for CJK."""
    if is_ascii_name(keyword):
        return re.compile(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])")
    return re.compile(re.escape(keyword))


def contains_term(folded_text: str, term: str) -> bool:
    term = fold(term).strip()
    if not term:
        return False
    return _keyword_pattern(term).search(folded_text) is not None


def expand_organization(org: str) -> list[str]:
    """Return *org* plus every alias of its canonical form."""
    lowered = fold(org).strip()
    expanded = [lowered]
    for canonical, aliases in ORG_ALIASES.items():
        if lowered == canonical or lowered in aliases:
            expanded.append(canonical)
            expanded.extend(aliases)
    return list(dict.fromkeys(expanded))


def match_name_parts(folded_text: str, full_name: str) -> bool:
    """Match "Yann LeCun"-style names when parts appear separately.

    Strict: every part (3+ chars) appears. Loose: the surname (4+ chars)
    and at least one given name appear.
    """
    parts = [p for p in re.split(r"[\s\-]+", fold_compact(full_name)) if len(p) >= 3]
    if len(parts) < 2:
        return False
    if all(contains_term(folded_text, part) for part in parts):
        return True
    surname, given = parts[-1], parts[:-1]
    if len(surname) >= 4 and contains_term(folded_text, surname):
        return any(contains_term(folded_text, g) for g in given)
    return False


def match_chinese_name(text: str, name: str) -> bool:
    """Match a 2-4 character Chinese name, allowing surname and given name apart."""
    if not name or len(name) < 2 or not has_han(name):
        return False
    if name in text:
        return True
    if len(name) <= 4:
        surname, given = name[0], name[1:]
        return surname in text and given in text
    return False


def detect_negative_signals(folded_text: str) -> list[str]:
    return [
        domain
        for domain, keywords in NEGATIVE_SIGNALS.items()
        if any(contains_term(folded_text, kw) for kw in keywords)
    ]


def has_ai_keyword(folded_text: str) -> bool:
    return any(contains_term(folded_text, kw) for kw in AI_KEYWORDS)


@dataclass
class IdentityDecision:
    """Why an item was accepted or rejected (kept for diagnostics)."""

    accepted: bool
    name_match: bool = False
    org_match: bool = False
    occupation_match: bool = False
    ai_keyword: bool = False
    negative_domains: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if self.accepted:
            return "accepted"
        if not self.name_match:
            return "no_name_evidence"
        if self.negative_domains:
            return "negative_signal:" + ",".join(self.negative_domains)
        return "no_corroboration"


def _name_evidence(text: str, folded_text: str, person: PersonIdentity) -> bool:
    names = [person.english_name, person.name, *person.aliases]
    for name in names:
        if not name or len(name.strip()) < 2:
            continue
        if has_han(name):
            if match_chinese_name(text, name):
                return True
            continue
        if contains_term(folded_text, fold_compact(name)) or contains_term(folded_text, name):
            return True
        if " " in name.strip() and match_name_parts(folded_text, name):
            return True
    return False


def _org_evidence(folded_text: str, person: PersonIdentity) -> bool:
    for org in person.organizations:
        if not org or len(org) < 2:
            continue
        if any(contains_term(folded_text, variant) for variant in expand_organization(org)):
            return True
    return False


def evaluate(text: str, person: PersonIdentity) -> IdentityDecision:
    """Run the full identity decision for *text* against *person*."""
    if not text or not text.strip():
        return IdentityDecision(accepted=False)

    folded_text = fold(text)
    decision = IdentityDecision(
        accepted=False,
        name_match=_name_evidence(text, folded_text, person),
        org_match=_org_evidence(folded_text, person),
        occupation_match=any(
            occ and len(occ) > 2 and contains_term(folded_text, occ)
            for occ in person.occupations
        ),
        ai_keyword=has_ai_keyword(folded_text),
        negative_domains=detect_negative_signals(folded_text),
    )

    if not decision.name_match:
        return decision

    if decision.negative_domains:
        if decision.org_match:
            if all(d in CROSSOVER_DOMAINS for d in decision.negative_domains):
                decision.accepted = decision.ai_keyword
        return decision

    decision.accepted = decision.org_match or decision.occupation_match or decision.ai_keyword
    return decision


def is_about_person(text: str, person: PersonIdentity) -> bool:
    return evaluate(text, person).accepted


def identity_score(text: str, person: PersonIdentity) -> float:
    """0..1 relevance score used to rank items for fact extraction."""
    if not text or not text.strip():
        return 0.0
    folded_text = fold(text)
    score = 0.0
    if person.english_name and contains_term(folded_text, person.english_name):
        score += 0.4
    elif person.english_name and match_name_parts(folded_text, person.english_name):
        score += 0.3
    elif _name_evidence(text, folded_text, person):
        score += 0.3
    if _org_evidence(folded_text, person):
        score += 0.3
    if has_ai_keyword(folded_text):
        score += 0.2
    score -= 0.3 * len(detect_negative_signals(folded_text))
    return max(0.0, min(1.0, score))
