"""
Streamlit Web 应用程序入口。
负责 UI 渲染和用户交互，调用底层服务进行业务处理。
"""
from datetime import datetime
from typing import Optional

import pandas as pd
import streamlit as st

from giftplan import config
from giftplan.errors import GiftPlanError
from giftplan.models import GiftSet, Tier
from giftplan.service import (
    CalculationService,
    ExportService,
    GiftSetService,
    ProductLibraryService,
    RecommendationService,
    SORT_OPTIONS,
    tier_form,
)
from giftplan.storage import FileBlobStore, gift_set_store, product_store

# ==========================================
# UI 辅助函数
# ==========================================

def init_session_state():
    """初始化 Session State 变量。"""
    if "library" not in st.session_state:
        blob_store = FileBlobStore(config.DATA_DIR)
        st.session_state.library = ProductLibraryService(product_store(blob_store))
        st.session_state.sets = GiftSetService(gift_set_store(blob_store))
    if "current_set_id" not in st.session_state:
        st.session_state.current_set_id = None
    if "active_tier_id" not in st.session_state:
        st.session_state.active_tier_id = None
    if "ai_results" not in st.session_state:
        # 档位ID -> RecommendationOutcome，每个档位独立
        st.session_state.ai_results = {}


def render_sidebar():
    """渲染侧边栏：产品库导入与选品列表。"""
    library: ProductLibraryService = st.session_state.library
    with st.sidebar:
        st.header("📦 产品库")
        uploaded_file = st.file_uploader("导入选品 (CSV: UTF-8/GBK，或 xlsx)", type=["csv", "xlsx"])
        if uploaded_file is not None and st.button("📂 开始导入", type="primary", use_container_width=True):
            try:
                count = library.import_file(uploaded_file.getvalue(), uploaded_file.name)
                st.success(f"已成功导入 {count} 条产品数据")
            except GiftPlanError as e:
                st.error(f"导入失败，请确保CSV格式正确且编码为UTF-8或GBK。({e})")

        st.markdown("---")
        term = st.text_input("搜索品名/SKU", key="search_term")
        category = st.selectbox("分类", library.categories(), key="active_category")
        sort_by = st.selectbox(
            "排序",
            SORT_OPTIONS,
            format_func=lambda x: {"default": "默认", "price-asc": "零售价从低到高", "price-desc": "零售价从高到低"}[x],
        )

        tier_id = st.session_state.active_tier_id
        ai_ids = set()
        if tier_id in st.session_state.ai_results:
            ai_ids = {r.productId for r in st.session_state.ai_results[tier_id].recommendations}

        for p in library.search(term, category, sort_by):
            col_info, col_add = st.columns([4, 1])
            with col_info:
                if p.has_image:
                    st.image(p.image, width=64)
                else:
                    st.caption("🖼️ 无图")
                star = "⭐ " if p.id in ai_ids else ""
                st.markdown(f"**{star}{p.name}**  \n零售 ¥{p.retail_price} · 采购 ¥{p.platform_price}")
            with col_add:
                if st.button("➕", key=f"add_{p.id}", disabled=tier_id is None, help="添加到当前档位"):
                    st.session_state.sets.add_product(st.session_state.current_set_id, tier_id, p.id)
                    st.rerun()


def render_library_editor():
    """产品库表格编辑。"""
    library: ProductLibraryService = st.session_state.library
    with st.expander("🗂️ 管理产品库", expanded=False):
        if st.button("➕ 新增选品"):
            library.add_blank_product()
            st.rerun()

        df = pd.DataFrame([p.to_dict() for p in library.products])
        if df.empty:
            st.info("产品库为空。")
            return

        edit_cols = ["id", "sku", "name", "platformPrice", "retailPrice", "category"]
        edited_df = st.data_editor(
            df[edit_cols],
            column_config={
                "id": None,
                "sku": "SKU",
                "name": "产品名称",
                "platformPrice": st.column_config.NumberColumn("采购价", format="%.2f", min_value=0.0),
                "retailPrice": st.column_config.NumberColumn("零售价", format="%.2f", min_value=0.0),
                "category": "分类",
            },
            hide_index=True,
            use_container_width=True,
            key="library_editor",
        )

        col_save, col_del = st.columns([1, 2])
        with col_save:
            if st.button("💾 保存修改", type="primary"):
                _sync_library(edited_df)
        with col_del:
            names = {p.id: f"{p.name} ({p.sku})" for p in library.products}
            to_delete = st.selectbox("删除选品", [""] + list(names), format_func=lambda x: names.get(x, "请选择"))
            if to_delete and st.button("🗑️ 确认永久删除此选品"):
                library.delete_product(to_delete)
                st.rerun()


def _sync_library(edited_df: pd.DataFrame):
    """将编辑后的表格回写到产品库。"""
    library: ProductLibraryService = st.session_state.library
    count = 0
    for _, row in edited_df.iterrows():
        library.update_product(
            row["id"],
            sku=row["sku"],
            name=row["name"],
            platform_price=row["platformPrice"],
            retail_price=row["retailPrice"],
            category=row["category"],
        )
        count += 1
    st.toast(f"已更新 {count} 条选品")
    st.rerun()


def render_set_list():
    """方案管理中心。"""
    sets: GiftSetService = st.session_state.sets
    st.subheader("方案管理中心")

    with st.form("new_set", clear_on_submit=True):
        name = st.text_input("输入客户或项目名称...")
        if st.form_submit_button("进入策划工作台", type="primary"):
            gift_set = sets.create_set(name)
            if gift_set:
                st.session_state.current_set_id = gift_set.id
                st.rerun()

    for s in sets.gift_sets:
        created = datetime.fromtimestamp(s.created_at / 1000).strftime("%Y-%m-%d")
        col_open, col_del = st.columns([5, 1])
        with col_open:
            if st.button(f"📁 {s.name} · {created} 创建 · {len(s.tiers)} 个档位", key=f"open_{s.id}", use_container_width=True):
                st.session_state.current_set_id = s.id
                st.session_state.active_tier_id = None
                st.rerun()
        with col_del:
            if st.button("🗑️", key=f"del_{s.id}", help="删除整个设计方案"):
                sets.delete_set(s.id)
                st.rerun()


def render_tier_form(gift_set: GiftSet, tier: Optional[Tier] = None):
    """档位参数表单，新增与修改共用。"""
    form_values = tier_form(tier) if tier else dict(config.DEFAULT_TIER_FORM)
    key = tier.id if tier else "new"
    with st.form(f"tier_form_{key}"):
        values = {
            "target_price": st.text_input("档位营收价 (元)", form_values["target_price"], key=f"{key}_target"),
            "discount": st.text_input("选品折率 (%)", form_values["discount"], key=f"{key}_discount"),
            "quantity": st.text_input("数量 (套)", form_values["quantity"], key=f"{key}_quantity"),
        }
        col1, col2, col3 = st.columns(3)
        with col1:
            values["box"] = st.text_input("包材单价", form_values["box"], key=f"{key}_box")
        with col2:
            values["labor"] = st.text_input("人工单价", form_values["labor"], key=f"{key}_labor")
        with col3:
            values["logistics"] = st.text_input("物流单价", form_values["logistics"], key=f"{key}_logistics")
        values["tax"] = st.text_input("税率 (%)", form_values["tax"], key=f"{key}_tax")

        if st.form_submit_button("确认并应用最新核算模型", type="primary"):
            saved = st.session_state.sets.save_tier(gift_set.id, values, tier_id=tier.id if tier else None)
            st.session_state.active_tier_id = saved.id
            st.rerun()


def render_workbench(gift_set: GiftSet):
    """方案工作台：档位核算、选品和导出。"""
    library: ProductLibraryService = st.session_state.library
    sets: GiftSetService = st.session_state.sets
    lookup = library.lookup()

    col_back, col_title, col_export = st.columns([1, 4, 2])
    with col_back:
        if st.button("⬅️ 返回"):
            st.session_state.current_set_id = None
            st.session_state.active_tier_id = None
            st.rerun()
    with col_title:
        st.subheader(gift_set.name)
    with col_export:
        export_service = ExportService()
        csv_bytes, csv_name = export_service.get_csv_bytes(gift_set, lookup)
        st.download_button("📥 导出方案报表 (CSV)", data=csv_bytes, file_name=csv_name, mime="text/csv", use_container_width=True)
        excel_bytes, excel_name = export_service.get_excel_bytes(gift_set, lookup)
        st.download_button(
            "📥 导出 Excel",
            data=excel_bytes,
            file_name=excel_name,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            use_container_width=True,
        )

    with st.expander("➕ 新增策划档位"):
        render_tier_form(gift_set)

    calc_service = CalculationService()
    results = calc_service.calculate_set(gift_set, lookup)
    report = calc_service.get_quick_report(results)
    st.caption(f"📊 档位 {report['档位数']} | 空档位 {report['空档位数']} | 亏损档位 {report['亏损档位数']}")

    for tier, b in results:
        active = st.session_state.active_tier_id == tier.id
        with st.container(border=True):
            col_head, col_sel, col_del = st.columns([4, 1, 1])
            with col_head:
                st.markdown(f"### {'🟢 ' if active else ''}¥{tier.target_tier_price} 预算档 · {tier.quantity}套 规模")
            with col_sel:
                if st.button("设为当前", key=f"act_{tier.id}", disabled=active):
                    st.session_state.active_tier_id = tier.id
                    st.rerun()
            with col_del:
                if st.button("删除档位", key=f"deltier_{tier.id}"):
                    sets.delete_tier(gift_set.id, tier.id)
                    st.session_state.ai_results.pop(tier.id, None)
                    st.rerun()

            m1, m2, m3, m4 = st.columns(4)
            m1.metric("单套全成本", f"¥{b.total_unit_cost:.2f}")
            m2.metric("单套净利", f"¥{b.net_profit:.2f}", delta=f"{b.margin_percentage:.2f}%")
            m3.metric("整体折扣率", f"{b.overall_discount_rate:.2f}%")
            m4.metric("全案总投入", f"¥{b.total_project_investment:.2f}")

            st.caption(
                f"零售总额 ¥{b.total_retail:.2f} · 折后展示总价 ¥{b.product_presentation_value:.2f} · "
                f"全采购成本 ¥{b.total_platform_purchase_cost:.2f} · 杂费 ¥{b.other_costs:.2f} · 税额 ¥{b.tax_amount:.2f}"
            )

            # idx 为 selected_product_ids 中的位置，失效引用不展示
            for idx, pid in enumerate(tier.selected_product_ids):
                product = lookup(pid)
                if product is None:
                    continue
                col_item, col_rm = st.columns([6, 1])
                with col_item:
                    st.markdown(
                        f"{product.name} `{product.sku}` · 零售 ¥{product.retail_price} · "
                        f"折后 ¥{product.retail_price * b.discount_rate_decimal:.2f} · 采购 ¥{product.platform_price}"
                    )
                with col_rm:
                    if st.button("✖", key=f"rm_{tier.id}_{idx}"):
                        sets.remove_product_at(gift_set.id, tier.id, idx)
                        st.rerun()

            with st.expander("⚙️ 修改参数"):
                render_tier_form(gift_set, tier)

            render_ai_area(gift_set, tier)


def render_ai_area(gift_set: GiftSet, tier: Tier):
    """AI 智能选品区域。"""
    library: ProductLibraryService = st.session_state.library
    with st.expander("✨ AI 智能选品"):
        requirement = st.text_area("客户特定需求", placeholder=config.AI_DEFAULT_REQUIREMENT, key=f"req_{tier.id}")
        if st.button("开始推荐", key=f"ai_{tier.id}", disabled=not library.products):
            with st.spinner("AI 正在思考..."):
                outcome = RecommendationService().recommend(library.products, tier, requirement)
            st.session_state.ai_results[tier.id] = outcome
            if not outcome.ok:
                st.error(outcome.error)

        outcome = st.session_state.ai_results.get(tier.id)
        if not outcome or not outcome.recommendations:
            return

        lookup = library.lookup()
        if st.button("一键采纳前三", key=f"apply_all_{tier.id}"):
            st.session_state.sets.apply_recommendations(gift_set.id, tier.id, outcome)
            st.rerun()
        for rank, rec in enumerate(outcome.recommendations):
            product = lookup(rec.productId)
            if product is None:
                continue
            col_rec, col_apply = st.columns([5, 1])
            with col_rec:
                badge = "🟢" if rec.confidence >= 90 else "🟠"
                st.markdown(f"{badge} **{rec.confidence}%** {product.name} · ¥{product.retail_price}  \n_{rec.reason}_")
            with col_apply:
                if st.button("采纳", key=f"apply_{tier.id}_{rank}"):
                    st.session_state.sets.add_product(gift_set.id, tier.id, rec.productId)
                    st.rerun()


# ==========================================
# 主程序
# ==========================================

def main():
    st.set_page_config(page_title="藏镜山水 · 数字化礼赠设计平台", page_icon="🎁", layout="wide")
    config.setup_logging()
    init_session_state()

    st.title("🎁 数字化礼赠设计平台")
    st.markdown("---")

    render_sidebar()
    render_library_editor()

    current_set_id = st.session_state.current_set_id
    gift_set = None
    if current_set_id:
        try:
            gift_set = st.session_state.sets.get_set(current_set_id)
        except GiftPlanError:
            st.session_state.current_set_id = None

    if gift_set is None:
        render_set_list()
    else:
        render_workbench(gift_set)


if __name__ == "__main__":
    main()
