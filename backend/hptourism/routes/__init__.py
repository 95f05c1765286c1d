from hptourism.routes.himkosh import router as himkosh_router

__all__ = ["himkosh_router"]
