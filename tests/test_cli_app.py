import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from cli_app import main
from giftplan.service import GiftSetService, ProductLibraryService
from giftplan.storage import FileBlobStore, gift_set_store, product_store


def test_cli_full_flow(tmp_path, capsys):
    data_dir = str(tmp_path / "data")
    csv_path = tmp_path / "库.csv"
    csv_path.write_bytes("SKU编码,产品名称,采购价,零售价\nA-1,茶具,80,300\nB-1,茶叶,70,200\n".encode("gbk"))

    assert main(["--data-dir", data_dir, "import", str(csv_path)]) == 0
    assert main(["--data-dir", data_dir, "new-set", "中秋礼赠"]) == 0

    blob = FileBlobStore(data_dir)
    set_id = GiftSetService(gift_set_store(blob)).gift_sets[0].id
    assert main(["--data-dir", data_dir, "tier", set_id, "--target", "500"]) == 0

    tier_id = GiftSetService(gift_set_store(blob)).gift_sets[0].tiers[0].id
    product_ids = [p.id for p in ProductLibraryService(product_store(blob)).products[:2]]
    assert main(["--data-dir", data_dir, "select", set_id, tier_id] + product_ids) == 0

    capsys.readouterr()
    assert main(["--data-dir", data_dir, "show", set_id]) == 0
    out = capsys.readouterr().out
    assert "单套净利: 278.30" in out
    assert "净利率: 55.66%" in out

    report = tmp_path / "报表.csv"
    assert main(["--data-dir", data_dir, "export", set_id, "--out", str(report)]) == 0
    assert report.read_bytes().startswith("\ufeff".encode("utf-8"))


def test_cli_reports_errors(tmp_path, capsys):
    data_dir = str(tmp_path / "data")
    assert main(["--data-dir", data_dir, "show", "missing"]) == 1
    assert "操作失败" in capsys.readouterr().out


def test_cli_blank_set_name(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path), "new-set", "  "]) == 0
    assert "不能为空" in capsys.readouterr().out


def test_cli_unselect_uses_shown_position_with_dangling_id(tmp_path, capsys):
    data_dir = str(tmp_path / "data")
    csv_path = tmp_path / "库.csv"
    csv_path.write_bytes("产品名称,采购价,零售价\n茶具,80,300\n茶叶,70,200\n".encode("utf-8"))
    assert main(["--data-dir", data_dir, "import", str(csv_path)]) == 0
    assert main(["--data-dir", data_dir, "new-set", "中秋礼赠"]) == 0

    blob = FileBlobStore(data_dir)
    set_id = GiftSetService(gift_set_store(blob)).gift_sets[0].id
    assert main(["--data-dir", data_dir, "tier", set_id]) == 0
    tier_id = GiftSetService(gift_set_store(blob)).gift_sets[0].tiers[0].id
    tea_set_id, tea_id = [p.id for p in ProductLibraryService(product_store(blob)).products[:2]]
    assert main(["--data-dir", data_dir, "select", set_id, tier_id, tea_set_id, tea_id]) == 0

    # 删除排在前面的选品，档位中留下失效引用
    assert main(["--data-dir", data_dir, "delete-product", tea_set_id]) == 0

    capsys.readouterr()
    assert main(["--data-dir", data_dir, "show", set_id]) == 0
    out = capsys.readouterr().out
    assert "[1] 茶叶" in out
    assert "[0]" not in out

    assert main(["--data-dir", data_dir, "unselect", set_id, tier_id, "1"]) == 0
    remaining = GiftSetService(gift_set_store(blob)).get_tier(set_id, tier_id).selected_product_ids
    assert remaining == [tea_set_id]
