# services/api/models/catalog.py
"""
Static category catalog: which categories a memo is recorded under, the
hint/templates shown for each, and the common tag vocabulary.

The catalog is read-only configuration. The wizard receives it as a value
object so tests can swap in a smaller one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .memo import RecordMode, RecordType


@dataclass(frozen=True)
class CategoryData:
    name: str
    hint: Optional[str] = None
    templates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class HintTemplate:
    name: str
    template: str


@dataclass(frozen=True)
class CategoryHint:
    """What the editor shows for the focused block."""
    category_name: str
    hint: Optional[str] = None
    templates: Tuple[str, ...] = ()
    detailed_templates: Tuple[HintTemplate, ...] = ()

    @property
    def available(self) -> bool:
        return bool(self.hint or self.templates or self.detailed_templates)


@dataclass(frozen=True)
class CategoryCatalog:
    default_categories: Mapping[RecordType, Tuple[CategoryData, ...]]
    custom_categories: Mapping[RecordType, Tuple[str, ...]]
    hint_templates: Mapping[str, Tuple[HintTemplate, ...]] = field(default_factory=dict)
    common_tags: Tuple[str, ...] = ()
    reflection_tag: str = "#反省"

    def get_categories(self, record_type: RecordType, record_mode: RecordMode) -> List[CategoryData]:
        """Ordered categories for a type/mode. Custom categories carry no hint or templates."""
        record_type = RecordType(record_type)
        if RecordMode(record_mode) == RecordMode.DEFAULT:
            return list(self.default_categories.get(record_type, ()))
        return [CategoryData(name=n) for n in self.custom_categories.get(record_type, ())]

    def category_names(self, record_type: RecordType, record_mode: RecordMode) -> List[str]:
        return [c.name for c in self.get_categories(record_type, record_mode)]

    def get_category(self, name: str, record_type: Optional[RecordType] = None) -> Optional[CategoryData]:
        """
        Look up default-category data by name.

        With a record_type only that type's defaults are searched; without one
        (edit-existing flow) every type is searched in declaration order.
        """
        if record_type is not None:
            pools = [self.default_categories.get(RecordType(record_type), ())]
        else:
            pools = list(self.default_categories.values())
        for pool in pools:
            for cat in pool:
                if cat.name == name:
                    return cat
        return None

    def get_hint_templates(self, name: str) -> List[HintTemplate]:
        return list(self.hint_templates.get(name, ()))

    def hint_for(self, name: str, record_type: Optional[RecordType] = None) -> CategoryHint:
        cat = self.get_category(name, record_type)
        return CategoryHint(
            category_name=name,
            hint=cat.hint if cat else None,
            templates=cat.templates if cat else (),
            detailed_templates=tuple(self.get_hint_templates(name)),
        )

    def is_known_tag(self, tag: str) -> bool:
        return tag in self.common_tags


# ========== Stock catalog ==========

COMMON_TAGS: Tuple[str, ...] = (
    "#気づき",
    "#反省",
    "#アイデア",
    "#調べる",
    "#誰かに相談する",
)

REFLECTION_TAG = "#反省"

_SHARED_DEFAULTS: Tuple[CategoryData, ...] = (
    CategoryData("所感", "どう感じましたか？", ("良かった点：\n気になった点：",)),
    CategoryData("トイレ", "トイレの情報", ("場所：\n清潔度：\nおむつ交換台：",)),
    CategoryData("休憩スペース", "休憩できる場所", ("場所：\n広さ：\n設備：",)),
    CategoryData("食事場所はあるか", "食事ができる場所", ("場所：\n種類：\n価格帯：",)),
    CategoryData("持っていくべき荷物", "必要な持ち物", ("必須：\nあると便利：",)),
    CategoryData("反省点", "次回に活かすこと", ("失敗した点：\n気づいた点：\n次に活かすこと：",)),
)

DEFAULT_BUILDING_CATEGORIES: Tuple[CategoryData, ...] = (
    CategoryData("施設の概要", "施設の基本情報を記録しましょう", ("名称：\n場所：\n特徴：",)),
) + _SHARED_DEFAULTS

DEFAULT_ACTIVITY_CATEGORIES: Tuple[CategoryData, ...] = (
    CategoryData("活動内容の概要", "活動の基本情報を記録しましょう", ("活動名：\n場所：\n時間：",)),
) + _SHARED_DEFAULTS

_SHARED_CUSTOM: Tuple[str, ...] = (
    "危険予測",
    "事前学習",
    "気づいたこと",
    "オトナが楽しめるポイント",
    "お土産",
    "記念品",
    "カブブック記録場所検討",
)

CUSTOM_BUILDING_CATEGORIES: Tuple[str, ...] = ("混雑度", "未就学児の考慮", "対象年齢") + _SHARED_CUSTOM
CUSTOM_ACTIVITY_CATEGORIES: Tuple[str, ...] = ("集合時間", "活動内容", "備品メモ") + _SHARED_CUSTOM


def _h(*pairs: Tuple[str, str]) -> Tuple[HintTemplate, ...]:
    return tuple(HintTemplate(name=n, template=t) for n, t in pairs)


CATEGORY_HINTS: Dict[str, Tuple[HintTemplate, ...]] = {
    "施設の概要": _h(
        ("施設情報", "施設名：\n営業時間：\n所在地：\nWebサイト："),
        ("駐車場情報", "場所：\n台数：\n距離：\n料金："),
        ("料金", "大人：\n子ども：\n割引："),
    ),
    "反省点": _h(
        ("計画面", "失敗した点：\n気づいた点："),
        ("現地対応", "困ったこと："),
        ("教訓", "次に活かすこと："),
    ),
    "活動内容の概要": _h(
        ("基本情報", "活動名：\n時間：\n場所："),
        ("参加者", "人数：\n年齢層："),
        ("内容", "概要："),
    ),
    "トイレ": _h(
        ("基本情報", "場所：\n数：\n清潔度："),
        ("設備", "おむつ替え台：\nベビーチェア："),
        ("アクセス", "距離：\n案内表示："),
    ),
    "所感": _h(
        ("全体的な印象", "良かった点：\n改善してほしい点："),
        ("子どもの反応", "楽しんでいた点：\n飽きていた点："),
        ("大人の視点", "学びになった点：\n疲労度："),
    ),
    "集合時間": _h(
        ("基本情報", "集合時刻：\n集合場所：\n解散時刻："),
        ("準備時間", "準備開始：\n移動時間："),
        ("注意事項", "遅刻対応：\n緊急連絡先："),
    ),
    "活動内容": _h(
        ("概要", "活動名：\n目的：\n対象年齢："),
        ("詳細", "進行手順：\n必要時間：\n難易度："),
        ("準備物", "材料：\n道具：\n配布物："),
    ),
    "備品メモ": _h(
        ("持参品", "個人持参：\n団体持参：\n忘れ物対策："),
        ("現地調達", "購入予定：\n借用予定：\n代替案："),
        ("管理", "責任者：\n保管場所：\n返却方法："),
    ),
    "混雑度": _h(
        ("時間帯", "平日：\n土日祝：\nピーク時間："),
        ("季節要因", "春夏：\n秋冬：\n特別期間："),
        ("対策", "回避方法：\n待ち時間：\n代替プラン："),
    ),
    "未就学児の考慮": _h(
        ("安全面", "危険箇所：\n注意事項：\n見守りポイント："),
        ("設備", "ベビーカー：\nおむつ替え：\n授乳室："),
        ("配慮事項", "年齢制限：\n体力的配慮：\n興味の持続："),
    ),
    "対象年齢": _h(
        ("推奨年齢", "最適年齢：\n下限年齢：\n上限年齢："),
        ("年齢別対応", "幼児向け：\n小学生向け：\n中高生向け："),
        ("調整方法", "難易度調整：\n時間調整：\n内容変更："),
    ),
    "危険予測": _h(
        ("物理的危険", "転倒リスク：\n衝突リスク：\n落下リスク："),
        ("環境的危険", "天候影響：\n交通状況：\n人混み："),
        ("対策", "予防策：\n対応手順：\n緊急時連絡："),
    ),
    "事前学習": _h(
        ("調査項目", "基本情報：\n利用方法：\nルール・マナー："),
        ("準備資料", "パンフレット：\nWebサイト：\n体験談："),
        ("共有方法", "説明資料：\n事前説明：\n当日説明："),
    ),
    "気づいたこと": _h(
        ("発見", "新しい発見：\n意外だった点：\n興味深い点："),
        ("学び", "教育的価値：\n体験の意味：\n今後の活用："),
        ("改善点", "準備不足：\n情報不足：\n計画変更点："),
    ),
    "オトナが楽しめるポイント": _h(
        ("大人向け要素", "歴史・文化：\n技術・仕組み：\n芸術・美学："),
        ("リラックス", "休憩スペース：\nカフェ・食事：\n景色・雰囲気："),
        ("学習機会", "専門知識：\n新しい体験：\n話題作り："),
    ),
    "お土産": _h(
        ("種類", "食品：\n雑貨：\n記念品："),
        ("価格帯", "予算：\n相場：\nコスパ："),
        ("購入ポイント", "おすすめ：\n注意点：\n保存方法："),
    ),
    "記念品": _h(
        ("撮影", "写真スポット：\n撮影ルール：\nデータ保存："),
        ("作品", "制作物：\n持ち帰り：\n保管方法："),
        ("思い出", "印象的場面：\n子どもの反応：\n記録方法："),
    ),
    "カブブック記録場所検討": _h(
        ("記録項目", "活動内容：\n学んだこと：\n感想："),
        ("写真選定", "代表写真：\n活動写真：\n集合写真："),
        ("レイアウト", "ページ構成：\nコメント欄：\n装飾アイデア："),
    ),
}


DEFAULT_CATALOG = CategoryCatalog(
    default_categories={
        RecordType.BUILDING: DEFAULT_BUILDING_CATEGORIES,
        RecordType.ACTIVITY: DEFAULT_ACTIVITY_CATEGORIES,
    },
    custom_categories={
        RecordType.BUILDING: CUSTOM_BUILDING_CATEGORIES,
        RecordType.ACTIVITY: CUSTOM_ACTIVITY_CATEGORIES,
    },
    hint_templates=CATEGORY_HINTS,
    common_tags=COMMON_TAGS,
    reflection_tag=REFLECTION_TAG,
)
