"""
简单的命令行入口：维护产品库和礼赠方案，查看档位核算并导出报表。
用法示例：
    python cli_app.py import 产品库.csv
    python cli_app.py new-set "某银行中秋礼赠"
    python cli_app.py tier <方案ID> --target 500 --discount 80
    python cli_app.py select <方案ID> <档位ID> <选品ID> [<选品ID> ...]
    python cli_app.py show <方案ID>
    python cli_app.py export <方案ID> --out 报表.csv
"""
import argparse
import sys

from giftplan import config
from giftplan.errors import GiftPlanError
from giftplan.service import (
    CalculationService,
    ExportService,
    GiftSetService,
    ProductLibraryService,
    RecommendationService,
    SORT_OPTIONS,
)
from giftplan.storage import FileBlobStore, gift_set_store, product_store


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="礼赠方案选品与档位核算工具")
    parser.add_argument("--data-dir", default=config.DATA_DIR, help="数据存储目录")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="从 CSV / Excel 导入选品")
    p.add_argument("file", help="CSV (UTF-8 或 GBK) 或 xlsx 文件")

    p = sub.add_parser("products", help="查看产品库")
    p.add_argument("--search", default="", help="按品名/SKU 搜索")
    p.add_argument("--category", default=config.ALL_CATEGORIES, help="按分类筛选")
    p.add_argument("--sort", choices=SORT_OPTIONS, default="default", help="按零售价排序")

    sub.add_parser("add-product", help="新增一条待完善的选品")

    p = sub.add_parser("delete-product", help="删除选品")
    p.add_argument("product_id")

    sub.add_parser("sets", help="列出所有方案")

    p = sub.add_parser("new-set", help="新建方案")
    p.add_argument("name")

    p = sub.add_parser("tier", help="新增或修改档位")
    p.add_argument("set_id")
    p.add_argument("--tier-id", help="修改已有档位时指定")
    p.add_argument("--target", dest="target_price", help="档位营收价")
    p.add_argument("--discount", help="选品折率 (%%)")
    p.add_argument("--quantity", help="数量")
    p.add_argument("--box", help="包材单价")
    p.add_argument("--labor", help="人工单价")
    p.add_argument("--logistics", help="物流单价")
    p.add_argument("--tax", help="税率 (%%)")

    p = sub.add_parser("select", help="向档位添加选品")
    p.add_argument("set_id")
    p.add_argument("tier_id")
    p.add_argument("product_ids", nargs="+")

    p = sub.add_parser("unselect", help="按位置移除档位中的选品 (从 0 开始)")
    p.add_argument("set_id")
    p.add_argument("tier_id")
    p.add_argument("index", type=int)

    p = sub.add_parser("show", help="查看方案核算结果")
    p.add_argument("set_id")

    p = sub.add_parser("export", help="导出方案报表")
    p.add_argument("set_id")
    p.add_argument("--out", default="", help="导出文件名 (默认按方案名生成)")
    p.add_argument("--xlsx", action="store_true", help="导出为 Excel 而不是 CSV")

    p = sub.add_parser("recommend", help="AI 智能选品")
    p.add_argument("set_id")
    p.add_argument("tier_id")
    p.add_argument("--requirement", default="", help="客户特定需求")
    p.add_argument("--apply", action="store_true", help="一键采纳前三个推荐")

    return parser


def print_breakdown(tier, breakdown, lookup):
    print(f"--- {tier.label or tier.id} (档位ID: {tier.id}) ---")
    print(f"  {tier.quantity} 套 | 营收价 ¥{breakdown.revenue_per_unit} | 选品折率 {tier.discount_rate}%")
    # 序号为 selected_product_ids 中的原始位置，与 unselect 一致；失效引用不展示
    for idx, pid in enumerate(tier.selected_product_ids):
        p = lookup(pid)
        if p is None:
            continue
        print(f"  [{idx}] {p.name} ({p.sku}) 零售 ¥{p.retail_price} 折后 ¥{p.retail_price * breakdown.discount_rate_decimal:.2f} 采购 ¥{p.platform_price}")
    print(f"  非折扣零售总额: {breakdown.total_retail:.2f}  整体折扣率: {breakdown.overall_discount_rate:.2f}%")
    print(f"  全采购成本: {breakdown.total_platform_purchase_cost:.2f}  单套杂费: {breakdown.other_costs:.2f}  预估税额: {breakdown.tax_amount:.2f}")
    print(f"  单套全成本: {breakdown.total_unit_cost:.2f}  单套净利: {breakdown.net_profit:.2f}  净利率: {breakdown.margin_percentage:.2f}%")
    print(f"  全案总投入: {breakdown.total_project_investment:.2f}")


def main(argv=None):
    config.setup_logging()
    args = build_parser().parse_args(argv)

    blob_store = FileBlobStore(args.data_dir)
    library = ProductLibraryService(product_store(blob_store))
    sets = GiftSetService(gift_set_store(blob_store))

    try:
        run(args, library, sets)
    except (GiftPlanError, IndexError, ValueError) as e:
        print(f"操作失败: {e}")
        return 1
    return 0


def run(args, library: ProductLibraryService, sets: GiftSetService):
    if args.command == "import":
        with open(args.file, "rb") as f:
            count = library.import_file(f.read(), args.file)
        print(f"已成功导入 {count} 条产品数据")

    elif args.command == "products":
        for p in library.search(args.search, args.category, args.sort):
            print(f"{p.id}\t{p.sku}\t{p.name}\t零售 ¥{p.retail_price}\t采购 ¥{p.platform_price}\t{p.category}")

    elif args.command == "add-product":
        product = library.add_blank_product()
        print(f"已新增选品: {product.id} ({product.sku})")

    elif args.command == "delete-product":
        library.delete_product(args.product_id)
        print("已删除。")

    elif args.command == "sets":
        if not sets.gift_sets:
            print("暂无方案。")
        for s in sets.gift_sets:
            print(f"{s.id}\t{s.name}\t{len(s.tiers)} 个档位")

    elif args.command == "new-set":
        gift_set = sets.create_set(args.name)
        if gift_set is None:
            print("方案名称不能为空。")
        else:
            print(f"已创建方案: {gift_set.id}")

    elif args.command == "tier":
        form = {k: getattr(args, k) for k in config.DEFAULT_TIER_FORM}
        tier = sets.save_tier(args.set_id, form, tier_id=args.tier_id)
        print(f"档位已保存: {tier.id} ({tier.label})")

    elif args.command == "select":
        for pid in args.product_ids:
            library.get(pid)
        tier = sets.add_products(args.set_id, args.tier_id, args.product_ids)
        print(f"档位 {tier.label} 现有 {len(tier.selected_product_ids)} 个选品")

    elif args.command == "unselect":
        tier = sets.remove_product_at(args.set_id, args.tier_id, args.index)
        print(f"档位 {tier.label} 现有 {len(tier.selected_product_ids)} 个选品")

    elif args.command == "show":
        gift_set = sets.get_set(args.set_id)
        calc_service = CalculationService()
        lookup = library.lookup()
        results = calc_service.calculate_set(gift_set, lookup)
        print(f"方案: {gift_set.name}")
        for tier, breakdown in results:
            print_breakdown(tier, breakdown, lookup)
        print("核对报告:", calc_service.get_quick_report(results))

    elif args.command == "export":
        gift_set = sets.get_set(args.set_id)
        out_path = ExportService().export_to_file(gift_set, library.lookup(), args.out, excel=args.xlsx)
        print(f"结果已导出至: {out_path}")

    elif args.command == "recommend":
        tier = sets.get_tier(args.set_id, args.tier_id)
        print("正在请求 AI 选品...")
        outcome = RecommendationService().recommend(library.products, tier, args.requirement)
        if not outcome.ok:
            print(outcome.error)
            return
        lookup = library.lookup()
        for rec in outcome.recommendations:
            product = lookup(rec.productId)
            print(f"{rec.confidence:>3}%  {product.name} ({rec.productId})  {rec.reason}")
        if args.apply and outcome.recommendations:
            tier = sets.apply_recommendations(args.set_id, args.tier_id, outcome)
            print(f"已采纳前 {config.AI_APPLY_TOP_N} 个推荐，档位现有 {len(tier.selected_product_ids)} 个选品")


if __name__ == "__main__":
    sys.exit(main())
