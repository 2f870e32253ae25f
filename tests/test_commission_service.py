import pytest

from commissionlink.jobs.commissions import CommissionService, CommissionSetting

from conftest import FakeCatalog, make_node


@pytest.fixture()
def catalog():
    return FakeCatalog([make_node(1, "Galaxy phone", product_type="Phones", price="100"), make_node(2, "Novel")])


@pytest.fixture()
def service(backend, catalog):
    return CommissionService(backend, catalog)


@pytest.mark.asyncio
async def test_set_product_commission_syncs_stub_first(service, backend):
    result = await service.set_product_commission("demo", "1", CommissionSetting(12.5))

    assert result["productTitle"] == "Galaxy phone"
    stub = backend.synced[0]["record"]
    assert stub["title"] == "Galaxy phone"
    assert stub["variants"] == [{"price": 100.0}]
    assert backend.commissions[0]["type"] == "product"
    assert backend.commissions[0]["commissionValue"] == 12.5


@pytest.mark.asyncio
async def test_get_product_commission(service):
    assert await service.get_product_commission("demo", "1") is None
    await service.set_product_commission("demo", "1", CommissionSetting(8, "amount"))

    found = await service.get_product_commission("demo", "1")

    assert found["commission"] == 8
    assert found["commissionType"] == "amount"


@pytest.mark.asyncio
async def test_set_category_commission(service, backend, catalog):
    result = await service.set_category_commission("demo", "Phones", CommissionSetting(10))

    assert catalog.calls[0]["query"] == 'product_type:"Phones"'
    assert catalog.calls[0]["first"] == 500
    assert result["updatedProducts"] == 2
    assert result["message"] == 'Applied 10% commission to 2 products in category "Phones"'
    kinds = [record["type"] for record in backend.commissions]
    assert kinds.count("category") == 1
    assert kinds.count("product") == 2


@pytest.mark.asyncio
async def test_remove_commission(service, backend):
    await service.remove_commission("demo", "category", "Phones")
    assert await service.remove_commission("demo", "tag", "x") == {"success": True}
    assert backend.deleted_commissions == [("demo", "Phones", "category")]


@pytest.mark.asyncio
async def test_overview(service, backend):
    await service.set_product_commission("demo", "1", CommissionSetting(20))
    await service.set_product_commission("demo", "2", CommissionSetting(5, "amount"))

    overview = await service.overview("demo")

    assert overview["totalCommissions"] == 2
    assert overview["averageCommission"] == 20.0
    assert overview["highestCommission"] == {"commission": 20.0, "type": "Product", "commissionType": "percentage"}
    assert overview["fixedAmountCommissionsCount"] == 1
    assert overview["categoryStats"]["total_products"] == 2
    assert overview["categoryStats"]["categorized"] == 1


@pytest.mark.asyncio
async def test_category_commission_isolates_product_failures(service, backend):
    backend.fail_products.add("1")

    result = await service.set_category_commission("demo", "Phones", CommissionSetting(10))

    assert result["updatedProducts"] == 1
    assert result["failedProducts"] == ["1"]
    assert result["message"] == 'Applied 10% commission to 1 products in category "Phones"'
    assert [record["referenceId"] for record in backend.commissions] == ["Phones", "2"]
